"""
Shared schema base.

The driver app and the map clients speak camelCase JSON.
"""

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising field names as camelCase."""
    
    class Config:
        alias_generator = to_camel
        populate_by_name = True
