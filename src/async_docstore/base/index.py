# src/async_docstore/base/index.py

from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import InvalidArgument


class IndexDefinition(BaseModel):
    """
    Declarative index: key spec plus options.

    `keys` maps field paths to a direction (1, -1) or an index type string
    such as "text" or "2dsphere". A single path string means ascending.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    keys: Dict[str, Union[int, str]]
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: Optional[int] = Field(default=None, alias="expireAfterSeconds")
    background: bool = False
    drop_dups: bool = Field(default=False, alias="dropDups")
    name: Optional[str] = None

    @field_validator("keys", mode="before")
    @classmethod
    def _normalize_keys(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {value: 1}
        if isinstance(value, (list, tuple)):
            return {k: 1 for k in value}
        return value

    @field_validator("keys")
    @classmethod
    def _keys_not_empty(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("Keys not specified")
        return value

    @classmethod
    def from_declaration(cls, declaration: Union["IndexDefinition", Mapping[str, Any]]) -> "IndexDefinition":
        """Build a definition from a class-level declaration entry."""
        if isinstance(declaration, IndexDefinition):
            return declaration
        if not isinstance(declaration, Mapping) or not declaration.get("keys"):
            raise InvalidArgument("Keys not specified")
        try:
            return cls.model_validate(dict(declaration))
        except ValidationError as e:
            raise InvalidArgument(f"Invalid index declaration: {e}") from e

    def render(self) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return `(keys, options)` in the store's vocabulary."""
        options: Dict[str, Any] = {}
        if self.unique:
            options["unique"] = True
            if self.drop_dups:
                options["dropDups"] = True
        if self.sparse:
            options["sparse"] = True
        if self.expire_after_seconds is not None:
            options["expireAfterSeconds"] = self.expire_after_seconds
        if self.background:
            options["background"] = True
        if self.name:
            options["name"] = self.name
        return dict(self.keys), options
