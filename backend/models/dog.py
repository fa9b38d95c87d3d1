"""Dog profile data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Location:
    """A point on the map."""
    latitude: float
    longitude: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass
class Dog:
    """
    A dog profile as served by the /dogs endpoints.

    ``interests`` is empty when the backend sends none; timestamps are kept
    as the ISO strings the backend returns.
    """
    id: str
    name: str
    breed: str
    age: int
    location: Location
    interests: List[str] = field(default_factory=list)
    photos: List[str] = field(default_factory=list)
    about_me: Optional[str] = None
    owner_name: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def photo(self) -> str:
        """Primary photo name, or an empty string."""
        return self.photos[0] if self.photos else ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dog":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            breed=data["breed"],
            age=int(data["age"]),
            location=Location.from_dict(data["location"]),
            interests=list(data.get("interests") or []),
            photos=list(data.get("photos") or []),
            about_me=data.get("about_me"),
            owner_name=data.get("owner_name"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class DogsPage:
    """One page of a dog listing."""
    dogs: List[Dog]
    total_count: int
    page: int
    page_size: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DogsPage":
        dogs = [Dog.from_dict(d) for d in data["dogs"]]
        return cls(
            dogs=dogs,
            total_count=int(data.get("total_count", len(dogs))),
            page=int(data.get("page", 1)),
            page_size=int(data.get("page_size", len(dogs))),
        )
