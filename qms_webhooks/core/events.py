"""Event catalogue the business layer publishes."""

NCR_CREATED = "ncr.created"
NCR_UPDATED = "ncr.updated"
NCR_CLOSED = "ncr.closed"
CAPA_CREATED = "capa.created"
CAPA_UPDATED = "capa.updated"
CAPA_CLOSED = "capa.closed"

KNOWN_EVENT_TYPES = frozenset({
    NCR_CREATED, NCR_UPDATED, NCR_CLOSED,
    CAPA_CREATED, CAPA_UPDATED, CAPA_CLOSED,
})

KNOWN_ENTITY_TYPES = frozenset({"NCR", "CAPA"})

# synthetic event used by the diagnostic send; never matched against filters
TEST_EVENT = "webhook.test"
