# tests/memory/test_matching.py

import pytest

from async_docstore.memory.matching import (QueryError, aggregate, apply_update,
                                            distinct, match, project,
                                            sort_documents, upsert_seed)

DOC = {
    "_id": 1,
    "name": "Alice",
    "age": 30,
    "tags": ["a", "b"],
    "profile": {"city": "Riga", "zip": "1000"},
    "items": [{"sku": "A1", "qty": 2}, {"sku": "B2", "qty": 7}],
    "active": True,
}


@pytest.mark.parametrize(
    "criteria, expected",
    [
        ({}, True),
        ({"name": "Alice"}, True),
        ({"name": "Bob"}, False),
        ({"profile.city": "Riga"}, True),
        ({"tags": "a"}, True),
        ({"items.sku": "B2"}, True),
        ({"age": {"$gt": 18, "$lt": 65}}, True),
        ({"age": {"$gte": 31}}, False),
        ({"age": {"$gt": "10"}}, False),
        ({"tags": {"$in": ["x", "b"]}}, True),
        ({"tags": {"$nin": ["a"]}}, False),
        ({"tags": {"$all": ["b", "a"]}}, True),
        ({"tags": {"$size": 2}}, True),
        ({"missing": {"$exists": False}}, True),
        ({"missing": None}, True),
        ({"name": {"$regex": "^ali", "$options": "i"}}, True),
        ({"name": {"$regex": "^ali"}}, False),
        ({"age": {"$type": "int"}}, True),
        ({"age": {"$mod": [4, 2]}}, True),
        ({"items": {"$elemMatch": {"sku": "A1", "qty": {"$gt": 5}}}}, False),
        ({"items": {"$elemMatch": {"sku": "B2", "qty": {"$gt": 5}}}}, True),
        ({"age": {"$not": {"$gt": 40}}}, True),
        ({"active": 1}, False),
        ({"$or": [{"name": "Bob"}, {"age": 30}]}, True),
        ({"$and": [{"name": "Alice"}, {"age": 31}]}, False),
        ({"$nor": [{"name": "Bob"}]}, True),
    ],
)
def test_match(criteria, expected):
    assert match(DOC, criteria) is expected


def test_unknown_operators_raise():
    with pytest.raises(QueryError):
        match(DOC, {"$where": "1"})
    with pytest.raises(QueryError):
        match(DOC, {"age": {"$near": 1}})


def test_apply_update_returns_new_document():
    updated = apply_update(
        DOC,
        {
            "$set": {"profile.city": "Oslo"},
            "$inc": {"age": 1},
            "$push": {"tags": {"$each": ["c", "d"]}},
            "$unset": {"active": ""},
        },
    )
    assert updated["profile"]["city"] == "Oslo"
    assert updated["age"] == 31
    assert updated["tags"] == ["a", "b", "c", "d"]
    assert "active" not in updated
    assert DOC["age"] == 30


def test_apply_update_array_operators():
    document = {"_id": 1, "tags": ["a", "b", "a"], "nums": [1, 5, 9], "queue": [1, 2, 3]}
    updated = apply_update(
        document,
        {
            "$addToSet": {"tags": "b"},
            "$pull": {"nums": {"$gt": 4}},
            "$pop": {"queue": -1},
        },
    )
    assert updated["tags"] == ["a", "b", "a"]
    assert updated["nums"] == [1]
    assert updated["queue"] == [2, 3]
    assert apply_update(document, {"$pullAll": {"tags": ["a"]}})["tags"] == ["b"]


def test_apply_update_min_max_rename_mul():
    document = {"_id": 1, "low": 5, "high": 5, "price": 2, "old": "x"}
    updated = apply_update(
        document,
        {"$min": {"low": 3}, "$max": {"high": 4}, "$mul": {"price": 3}, "$rename": {"old": "new"}},
    )
    assert updated == {"_id": 1, "low": 3, "high": 5, "price": 6, "new": "x"}


def test_apply_update_errors():
    with pytest.raises(QueryError) as excinfo:
        apply_update({"_id": 1, "n": "x"}, {"$inc": {"n": 1}})
    assert excinfo.value.code == 14
    with pytest.raises(QueryError) as excinfo:
        apply_update({"_id": 1}, {"$set": {"_id": 2}})
    assert excinfo.value.code == 66


def test_set_pads_arrays_and_rejects_unviable_paths():
    updated = apply_update({"_id": 1, "arr": [1]}, {"$set": {"arr.3": 4}})
    assert updated["arr"] == [1, None, None, 4]
    with pytest.raises(QueryError) as excinfo:
        apply_update({"_id": 1, "arr": [1]}, {"$set": {"arr.x": 4}})
    assert excinfo.value.code == 28


def test_upsert_seed_keeps_equalities_only():
    seed = upsert_seed({"name": "A", "age": {"$gt": 3}, "k.f": {"$eq": "F1"}, "$or": [{}]})
    assert seed == {"name": "A", "k": {"f": "F1"}}


def test_project_inclusion_and_exclusion():
    assert project(dict(DOC), {"name": 1}) == {"_id": 1, "name": "Alice"}
    assert project(dict(DOC), {"name": 1, "_id": 0}) == {"name": "Alice"}
    assert project(dict(DOC), {"_id": 1}) == {"_id": 1}
    excluded = project(dict(DOC), {"items": 0, "profile.zip": 0})
    assert "items" not in excluded
    assert excluded["profile"] == {"city": "Riga"}
    with pytest.raises(QueryError):
        project(dict(DOC), {"name": 1, "age": 0})


def test_sort_documents_by_several_keys():
    documents = [{"a": 1, "b": 2}, {"a": 2, "b": 1}, {"a": 1, "b": 1}]
    ordered = sort_documents(documents, [("a", 1), ("b", -1)])
    assert ordered == [{"a": 1, "b": 2}, {"a": 1, "b": 1}, {"a": 2, "b": 1}]


def test_aggregate_match_group_sort():
    documents = [{"param": i, "kind": "odd" if i % 2 else "even"} for i in range(1, 5)]
    result = aggregate(
        documents,
        [
            {"$match": {"param": {"$gte": 2}}},
            {"$group": {"_id": "$kind", "total": {"$sum": "$param"}, "n": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ],
    )
    assert result == [{"_id": "even", "total": 6, "n": 2}, {"_id": "odd", "total": 3, "n": 1}]


def test_aggregate_unwind_project_count():
    documents = [{"_id": 1, "tags": ["a", "b"], "n": 2}, {"_id": 2, "tags": [], "n": 3}]
    assert aggregate(documents, [{"$unwind": "$tags"}, {"$count": "total"}]) == [{"total": 2}]
    assert aggregate(documents, [{"$project": {"double": {"$multiply": ["$n", 2]}}}]) == [
        {"_id": 1, "double": 4},
        {"_id": 2, "double": 6},
    ]


def test_aggregate_rejects_unknown_stage():
    with pytest.raises(QueryError) as excinfo:
        aggregate([], [{"$frobnicate": {}}])
    assert excinfo.value.code == 40324


def test_distinct_flattens_arrays_in_first_seen_order():
    documents = [{"k": {"kk": "B"}}, {"k": {"kk": ["A", "B"]}}, {"k": {"kk": "C"}}, {}]
    assert distinct(documents, "k.kk") == ["B", "A", "C"]
