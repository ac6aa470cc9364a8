import pytest
from pydantic import BaseModel

from pmc_workers import registry


class _Payload(BaseModel):
    count: int


@pytest.fixture
def clean_registry(monkeypatch):
    monkeypatch.setattr(registry, "_routes", {})
    return registry


def test_register_and_lookup(clean_registry):
    @clean_registry.register("test.job", _Payload)
    async def handler(conn, payload):
        return None

    route = clean_registry.get_handler("test.job")
    assert route.handler is handler
    assert route.payload_model is _Payload
    assert clean_registry.registered_types() == ["test.job"]
    assert clean_registry.get_handler("other.job") is None


def test_duplicate_registration_is_rejected(clean_registry):
    @clean_registry.register("test.job", _Payload)
    async def first(conn, payload):
        return None

    with pytest.raises(ValueError, match="Duplicate handler"):

        @clean_registry.register("test.job", _Payload)
        async def second(conn, payload):
            return None


@pytest.mark.asyncio
async def test_route_hands_validated_model_to_handler(clean_registry):
    seen = []

    @clean_registry.register("test.job", _Payload)
    async def handler(conn, payload):
        seen.append(payload)

    await clean_registry.get_handler("test.job")("conn", {"count": "3"})
    assert seen == [_Payload(count=3)]


@pytest.mark.asyncio
async def test_invalid_payload_raises_value_error(clean_registry):
    @clean_registry.register("test.job", _Payload)
    async def handler(conn, payload):
        raise AssertionError("must not run")

    with pytest.raises(ValueError, match="Invalid test.job payload"):
        await clean_registry.get_handler("test.job")("conn", None)
