"""Tests for parameter resolution."""

from __future__ import annotations

import pytest
from kubernetes import client

from conftest import FakeStore, b64
from ibmcloud_operator.models import Param
from ibmcloud_operator.utils.errors import OperatorError, SpecError
from ibmcloud_operator.utils.params import parse_indirect_value, param_to_json, resolve_params


def secret(namespace: str, name: str, data: dict[str, str]) -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        data={k: b64(v) for k, v in data.items()},
    )


def config_map(namespace: str, name: str, data: dict[str, str]) -> client.V1ConfigMap:
    return client.V1ConfigMap(metadata=client.V1ObjectMeta(name=name, namespace=namespace), data=data)


def from_secret(name: str, secret_name: str, key: str) -> Param:
    return Param.from_dict({"name": name, "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}}})


def from_config_map(name: str, cm_name: str, key: str) -> Param:
    return Param.from_dict({"name": name, "valueFrom": {"configMapKeyRef": {"name": cm_name, "key": key}}})


class TestParseIndirectValue:
    """Test cases for parse_indirect_value function."""

    @pytest.mark.parametrize(
        "content,expected",
        [
            ("42", 42),
            ("true", True),
            ('{"a": [1, 2]}', {"a": [1, 2]}),
            ('"quoted"', "quoted"),
            ("  7  ", 7),
            ("plain text", "plain text"),
            ("12 monkeys", "12 monkeys"),
            ("", ""),
            ("NaN", "NaN"),
            ("Infinity", "Infinity"),
            ("-Infinity", "-Infinity"),
            ('{"ratio": NaN}', '{"ratio": NaN}'),
        ],
    )
    def test_parse(self, content, expected):
        assert parse_indirect_value(content) == expected


class TestResolveParams:
    """Test cases for resolve_params function."""

    def test_inline_values(self, store: FakeStore):
        params = [Param(name="a", value=1), Param(name="b", value={"x": "y"}), Param(name="c")]

        assert resolve_params(store, params, "default") == {"a": 1, "b": {"x": "y"}, "c": None}

    def test_secret_value(self, store: FakeStore):
        store.secrets[("default", "db-params")] = secret("default", "db-params", {"size": "10"})

        result = resolve_params(store, [from_secret("size", "db-params", "size")], "default")

        assert result == {"size": 10}

    def test_secret_falls_back_to_default_namespace(self, store: FakeStore):
        store.secrets[("default", "shared")] = secret("default", "shared", {"tier": "gold"})

        result = resolve_params(store, [from_secret("tier", "shared", "tier")], "team-a")

        assert result == {"tier": "gold"}

    def test_config_map_value(self, store: FakeStore):
        store.config_maps[("default", "db-config")] = config_map("default", "db-config", {"plan": '["a"]'})

        result = resolve_params(store, [from_config_map("plan", "db-config", "plan")], "default")

        assert result == {"plan": ["a"]}

    def test_missing_secret(self, store: FakeStore):
        with pytest.raises(OperatorError, match="Missing secret absent"):
            resolve_params(store, [from_secret("x", "absent", "k")], "default")

    def test_missing_secret_key(self, store: FakeStore):
        store.secrets[("default", "db-params")] = secret("default", "db-params", {"other": "1"})

        with pytest.raises(OperatorError, match="Missing secret db-params"):
            resolve_params(store, [from_secret("x", "db-params", "size")], "default")

    def test_missing_config_map(self, store: FakeStore):
        with pytest.raises(OperatorError, match="Missing configmap absent"):
            resolve_params(store, [from_config_map("x", "absent", "k")], "default")

    def test_value_and_value_from_exclusive(self, store: FakeStore):
        param = from_secret("x", "s", "k")
        param.value = 1

        with pytest.raises(SpecError, match="mutually exclusive"):
            param_to_json(store, param, "default")

    def test_empty_source(self, store: FakeStore):
        param = Param.from_dict({"name": "x", "valueFrom": {}})

        with pytest.raises(SpecError, match="Missing secretKeyRef or configMapKeyRef"):
            param_to_json(store, param, "default")
