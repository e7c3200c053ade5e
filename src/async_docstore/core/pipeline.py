# src/async_docstore/core/pipeline.py

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from async_docstore.base.exceptions import InvalidArgument
from async_docstore.base.expression import Expression

if TYPE_CHECKING:
    from async_docstore.core.collection import Collection


class Pipeline:
    """
    Ordered list of aggregation stages. Stages render in call order and
    are never reordered.
    """

    def __init__(self, collection: Optional["Collection"] = None):
        self._collection = collection
        self._stages: List[Dict[str, Any]] = []

    def stage(self, name: str, spec: Any) -> "Pipeline":
        if not isinstance(name, str) or not name.startswith("$"):
            raise InvalidArgument(f"Stage name must start with '$', got {name!r}")
        self._stages.append({name: spec})
        return self

    def match(self, criteria: Union[Expression, Mapping[str, Any]]) -> "Pipeline":
        if isinstance(criteria, Expression):
            criteria = criteria.to_dict()
        elif not isinstance(criteria, Mapping):
            raise InvalidArgument("match() expects an Expression or a mapping")
        return self.stage("$match", dict(criteria))

    def group(self, spec: Mapping[str, Any]) -> "Pipeline":
        if "_id" not in spec:
            raise InvalidArgument("Group stage requires an '_id' expression")
        return self.stage("$group", dict(spec))

    def project(self, spec: Mapping[str, Any]) -> "Pipeline":
        return self.stage("$project", dict(spec))

    def add_fields(self, spec: Mapping[str, Any]) -> "Pipeline":
        return self.stage("$addFields", dict(spec))

    def sort(self, spec: Mapping[str, int]) -> "Pipeline":
        return self.stage("$sort", dict(spec))

    def skip(self, count: int) -> "Pipeline":
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidArgument("skip must be a non-negative integer")
        return self.stage("$skip", count)

    def limit(self, count: int) -> "Pipeline":
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidArgument("limit must be a positive integer")
        return self.stage("$limit", count)

    def unwind(self, path: str, preserve_empty: bool = False) -> "Pipeline":
        if not path.startswith("$"):
            path = f"${path}"
        if preserve_empty:
            return self.stage("$unwind", {"path": path, "preserveNullAndEmptyArrays": True})
        return self.stage("$unwind", path)

    def lookup(self, from_collection: str, local_field: str, foreign_field: str, as_field: str) -> "Pipeline":
        return self.stage(
            "$lookup",
            {
                "from": from_collection,
                "localField": local_field,
                "foreignField": foreign_field,
                "as": as_field,
            },
        )

    def count(self, field: str = "count") -> "Pipeline":
        return self.stage("$count", field)

    def to_list(self) -> List[Dict[str, Any]]:
        return [dict(stage) for stage in self._stages]

    async def aggregate(self) -> List[Dict[str, Any]]:
        return await self._bound().aggregate(self)

    async def explain(self) -> Dict[str, Any]:
        return await self._bound().explain_aggregate(self)

    def _bound(self) -> "Collection":
        if self._collection is None:
            raise InvalidArgument("Pipeline is not bound to a collection")
        return self._collection

    def __len__(self) -> int:
        return len(self._stages)

    def __bool__(self) -> bool:
        return bool(self._stages)

    def __repr__(self) -> str:
        return f"Pipeline({self._stages!r})"
