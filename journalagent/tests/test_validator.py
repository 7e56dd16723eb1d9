import asyncio

from journalagent.agent.embedded import EmbeddedDataResolver
from journalagent.agent.validator import ReferenceValidator, build_correction_prompt
from journalagent.core.errors import StoreError
from journalagent.storage.memory_store import MemoryEntityStore


def test_all_known_references_validate(store):
    text = 'Best: <trade-ref id="trade-1"/> around <event-ref id="evt-1"/>, see <note-ref id="note-1"/>.'
    result = asyncio.run(ReferenceValidator(store).validate(text, "u-1"))
    assert result.is_valid
    assert result.correction_prompt is None
    assert result.valid_ids == {"trade": ["trade-1"], "event": ["evt-1"], "note": ["note-1"]}


def test_other_callers_trades_are_invalid_but_events_are_global(store):
    text = '<trade-ref id="trade-9"/> and <event-ref id="evt-1"/>'
    result = asyncio.run(ReferenceValidator(store).validate(text, "u-1"))
    assert result.invalid_ids == {"trade": ["trade-9"]}
    assert result.valid_ids == {"event": ["evt-1"]}
    assert result.invalid_count == 1


def test_correction_prompt_lists_invalid_and_valid_ids(store):
    text = '<trade-ref id="bad-id"/> vs <trade-ref id="trade-2"/>'
    result = asyncio.run(ReferenceValidator(store).validate(text, "u-1"))
    prompt = result.correction_prompt
    assert prompt.startswith("[INTERNAL SYSTEM INSTRUCTION - DO NOT ACKNOWLEDGE OR MENTION THIS TO THE USER]")
    assert "Trade IDs that DO NOT EXIST: bad-id" in prompt
    assert "Valid trade IDs you can use: trade-2" in prompt


def test_prompt_without_valid_ids_omits_valid_section():
    prompt = build_correction_prompt({"note": ["n-x"]}, {})
    assert "Note IDs that DO NOT EXIST: n-x" in prompt
    assert "VALID IDs" not in prompt


def test_store_failure_treats_ids_as_invalid():
    class BrokenStore(MemoryEntityStore):
        async def select(self, table, **kwargs):
            raise StoreError("store down")

    result = asyncio.run(ReferenceValidator(BrokenStore()).validate('<trade-ref id="trade-1"/>', "u-1"))
    assert result.invalid_ids == {"trade": ["trade-1"]}


def test_embedded_resolver_returns_existing_scoped_entities_only(store):
    text = (
        '<trade-ref id="trade-1"/> <trade-ref id="trade-1"/> <trade-ref id="trade-9"/> '
        '<trade-ref id="missing"/> <event-ref id="evt-1"/>'
    )
    embedded = asyncio.run(EmbeddedDataResolver(store).resolve(text, "u-1"))
    assert set(embedded) == {"trades", "events"}
    assert list(embedded["trades"]) == ["trade-1"]
    assert embedded["trades"]["trade-1"]["symbol"] == "EURUSD"
    assert embedded["events"]["evt-1"]["name"] == "Non-Farm Payrolls"


def test_embedded_resolver_empty_for_plain_text(store):
    assert asyncio.run(EmbeddedDataResolver(store).resolve("nothing here", "u-1")) == {}
