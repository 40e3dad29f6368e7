"""Request/response models for contact and location analytics routes."""

from pydantic import BaseModel, ConfigDict, Field


class ContactCreateRequest(BaseModel):
    """Business card details captured when a contact is added."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Contact first name")
    surname: str = Field(default="", description="Contact surname")
    phone: str = Field(default="", description="Contact phone number")
    email: str = Field(default="", description="Contact email")
    how_we_met: str = Field(default="", alias="howWeMet", description="Free-text meeting note")


class ContactCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(default="created")
    contact_index: int = Field(..., alias="contactIndex", description="Position in contact list")


class LocationHeatmapPointResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    latitude: float
    longitude: float
    location_name: str = Field(..., alias="locationName")
    connection_count: int = Field(..., alias="connectionCount")
