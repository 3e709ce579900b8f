"""Shared schema pieces."""
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Reads ORM attributes, speaks camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

def to_major_units(amount_minor: Optional[int]) -> Optional[Union[int, float]]:
    """Paise to INR; whole rupees stay integers."""
    if amount_minor is None:
        return None
    rupees, paise = divmod(int(amount_minor), 100)
    return rupees if paise == 0 else amount_minor / 100


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body: dict = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
