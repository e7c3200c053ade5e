# tests/base/test_operator.py

import pytest

from async_docstore.base.exceptions import InvalidArgument
from async_docstore.base.expression import Expression
from async_docstore.base.operator import Operator


def test_empty_operator_renders_empty_mapping():
    operator = Operator()
    assert operator.to_dict() == {}
    assert operator.is_empty()
    assert not operator
    assert len(operator) == 0


def test_set_and_unset_render():
    operator = Operator().set("name", "A").set("profile.city", "Riga").unset("legacy")
    assert operator.to_dict() == {
        "$set": {"name": "A", "profile.city": "Riga"},
        "$unset": {"legacy": ""},
    }
    assert len(operator) == 3


def test_unset_after_set_replaces_it():
    """The later of set/unset on one path wins."""
    operator = Operator().set("name", "A").unset("name")
    assert operator.to_dict() == {"$unset": {"name": ""}}
    operator.set("name", "B")
    assert operator.to_dict() == {"$set": {"name": "B"}}


def test_increment_accumulates_and_decrement_negates():
    operator = Operator().increment("visits").increment("visits", 4).decrement("stock", 2)
    assert operator.to_dict() == {"$inc": {"visits": 5, "stock": -2}}


@pytest.mark.parametrize("amount", ["5", None, True, [1]])
def test_increment_rejects_non_numeric_amount(amount):
    with pytest.raises(InvalidArgument):
        Operator().increment("visits", amount)


def test_multiply_min_max():
    operator = Operator().multiply("price", 1.5).min("low", 3).max("high", 10)
    assert operator.to_dict() == {
        "$mul": {"price": 1.5},
        "$min": {"low": 3},
        "$max": {"high": 10},
    }
    with pytest.raises(InvalidArgument):
        Operator().multiply("price", "2")


def test_different_operators_on_same_path_conflict():
    operator = Operator().set("score", 1)
    with pytest.raises(InvalidArgument, match="score"):
        operator.increment("score", 1)
    assert operator.to_dict() == {"$set": {"score": 1}}


def test_parent_and_child_paths_conflict():
    with pytest.raises(InvalidArgument, match="parent field 'profile'"):
        Operator().set("profile", {}).set("profile.city", "Riga")
    with pytest.raises(InvalidArgument, match="child field 'profile.city'"):
        Operator().set("profile.city", "Riga").unset("profile")


def test_rename_claims_target_path():
    operator = Operator().rename("old", "new")
    assert operator.to_dict() == {"$rename": {"old": "new"}}
    with pytest.raises(InvalidArgument):
        operator.set("new", 1)
    with pytest.raises(InvalidArgument):
        Operator().rename("a", "")
    with pytest.raises(InvalidArgument):
        Operator().rename("a", "a.b")


def test_push_single_then_each():
    operator = Operator().push("tags", "a")
    assert operator.to_dict() == {"$push": {"tags": "a"}}
    operator.push("tags", "b")
    assert operator.to_dict() == {"$push": {"tags": {"$each": ["a", "b"]}}}
    operator.push_each("tags", ["c", "d"])
    assert operator.to_dict() == {"$push": {"tags": {"$each": ["a", "b", "c", "d"]}}}


def test_push_each_and_add_to_set_each_require_sequences():
    assert Operator().push_each("tags", ("a",)).to_dict() == {
        "$push": {"tags": {"$each": ["a"]}}
    }
    assert Operator().add_to_set_each("tags", ["a", "b"]).to_dict() == {
        "$addToSet": {"tags": {"$each": ["a", "b"]}}
    }
    with pytest.raises(InvalidArgument):
        Operator().push_each("tags", "abc")
    with pytest.raises(InvalidArgument):
        Operator().pull_all("tags", 3)


def test_pull_accepts_value_or_expression():
    assert Operator().pull("tags", "a").to_dict() == {"$pull": {"tags": "a"}}
    criteria = Expression().where_greater("qty", 5)
    assert Operator().pull("items", criteria).to_dict() == {
        "$pull": {"items": {"qty": {"$gt": 5}}}
    }


def test_pop_first_and_last():
    operator = Operator().pop_first("queue").pop_last("stack")
    assert operator.to_dict() == {"$pop": {"queue": -1, "stack": 1}}


def test_from_dict_round_trip_and_validation():
    rendered = Operator().set("a", 1).increment("b", 2).push("c", 3).to_dict()
    assert Operator.from_dict(rendered).to_dict() == rendered
    with pytest.raises(InvalidArgument, match=r"\$frobnicate"):
        Operator.from_dict({"$frobnicate": {"a": 1}})
    with pytest.raises(InvalidArgument):
        Operator.from_dict({"$set": 5})


def test_to_dict_is_a_copy():
    operator = Operator().set("tags", ["a"])
    operator.to_dict()["$set"]["tags"].append("b")
    assert operator.to_dict() == {"$set": {"tags": ["a"]}}


def test_dollar_paths_rejected():
    with pytest.raises(InvalidArgument):
        Operator().set("$where", 1)
