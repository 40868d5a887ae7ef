"""Platform services: record store, orchestration, routing, pairing, billing."""
