"""Dog profile CRUD and nearby search over the REST backend."""
import logging
from typing import Any, Awaitable, Dict, List, Optional

from models.dog import Dog, DogsPage, Location
from services.api_client import APIClient, APIClientError, decode_response

logger = logging.getLogger(__name__)

DEFAULT_NEARBY_RADIUS = 5.0  # km


class DogProfileService:
    """
    Reads and writes dog profiles through /dogs.

    Every failure is raised as APIClientError. Its message is also kept in
    ``error`` until the next call succeeds, for callers that show it to the
    user instead of handling the exception.
    """

    def __init__(self, api_client: APIClient):
        self.api_client = api_client
        self.error: Optional[str] = None

    async def fetch_user_dogs(self) -> List[Dog]:
        """Dogs owned by the signed-in user."""
        data = await self._call(self.api_client.request("/dogs/user"))
        return self._decode(data, DogsPage.from_dict, "/dogs/user").dogs

    async def fetch_dogs(self, page: int = 1, page_size: int = 20) -> DogsPage:
        data = await self._call(self.api_client.request(
            "/dogs", params={"page": page, "page_size": page_size}
        ))
        return self._decode(data, DogsPage.from_dict, "/dogs")

    async def get_dog(self, dog_id: str) -> Dog:
        endpoint = f"/dogs/{dog_id}"
        data = await self._call(self.api_client.request(endpoint))
        return self._decode(data, Dog.from_dict, endpoint)

    async def create_dog(
        self,
        name: str,
        breed: str,
        age: int,
        location: Location,
        interests: Optional[List[str]] = None,
        about_me: Optional[str] = None,
        owner_name: Optional[str] = None
    ) -> Dog:
        """
        Create a dog profile.

        Args:
            name: Dog's name
            breed: Breed display name, e.g. "Cockapoo"
            age: Age in years
            location: Where the dog usually is
            interests: Free-form interest tags
            about_me: Profile text
            owner_name: Owner's display name

        Returns:
            The created profile as stored by the backend
        """
        body = {
            "name": name,
            "breed": breed,
            "age": age,
            "interests": interests,
            "location": location.to_dict(),
            "about_me": about_me,
            "owner_name": owner_name,
        }
        data = await self._call(self.api_client.request("/dogs", method="POST", body=body))
        dog = self._decode(data, Dog.from_dict, "/dogs")
        logger.info(f"Created dog profile {dog.id} ({dog.name})")
        return dog

    async def update_dog(self, dog_id: str, **changes: Any) -> Dog:
        """
        Update the given fields of a dog profile. Fields left as None are not sent.

        Accepted fields: name, breed, age, interests, location, about_me, owner_name.
        """
        unknown = set(changes) - {"name", "breed", "age", "interests", "location", "about_me", "owner_name"}
        if unknown:
            raise ValueError(f"Unknown dog fields: {', '.join(sorted(unknown))}")

        body: Dict[str, Any] = {}
        for key, value in changes.items():
            if value is None:
                continue
            body[key] = value.to_dict() if isinstance(value, Location) else value

        endpoint = f"/dogs/{dog_id}"
        data = await self._call(self.api_client.request(endpoint, method="PUT", body=body))
        return self._decode(data, Dog.from_dict, endpoint)

    async def delete_dog(self, dog_id: str) -> None:
        await self._call(self._delete(f"/dogs/{dog_id}"))
        logger.info(f"Deleted dog profile {dog_id}")

    async def _delete(self, endpoint: str) -> Dict[str, Any]:
        try:
            return await self.api_client.request(endpoint, method="DELETE")
        except APIClientError as e:
            # An empty body is the normal answer to DELETE
            if e.code != "NO_DATA":
                raise
            return {}

    async def get_nearby_dogs(self, location: Location, radius: float = DEFAULT_NEARBY_RADIUS) -> List[Dog]:
        """Dogs within ``radius`` km of ``location``."""
        data = await self._call(self.api_client.request(
            "/dogs/nearby",
            params={"lat": location.latitude, "lng": location.longitude, "radius": radius}
        ))
        return self._decode(data, DogsPage.from_dict, "/dogs/nearby").dogs

    async def _call(self, request: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            data = await request
        except APIClientError as e:
            self.error = e.error.message
            logger.error(f"Dog profile request failed: {e}", extra={"error_code": e.code})
            raise
        self.error = None
        return data

    def _decode(self, data, decoder, endpoint: str):
        try:
            return decode_response(data, decoder, endpoint)
        except APIClientError as e:
            self.error = e.error.message
            raise
