"""Seed a few internal entities into the database."""
from nautical.db import close_store, get_store
from nautical.internal import InternalRepository

INITIAL_ENTITIES = [
    {"type": "note", "origin": "web-ui", "data": b"first note"},
    {"type": "note", "origin": "webhook", "data": b"relayed note"},
    {"type": "task", "origin": "cli", "data": b"todo"},
]


def main():
    repo = InternalRepository(get_store())
    existing = {(e.type, e.origin) for e in repo.all()}

    for fields in INITIAL_ENTITIES:
        if (fields["type"], fields["origin"]) in existing:
            print(f"Skipping {fields['type']} from {fields['origin']} - already exists")
            continue

        entity = repo.create()
        entity.type = fields["type"]
        entity.origin = fields["origin"]
        entity.data = fields["data"]
        entity.save()
        print(f"Created: {entity.type} from {entity.origin} (id={entity.id})")

    close_store()


if __name__ == "__main__":
    main()
