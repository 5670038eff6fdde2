"""
RestQL unit tests for the write orchestrator, the partitioner and the caller contract
"""

import unittest as _unittest

from restql_core.pipeline.dispatch import WriteKind, execute
from restql_core.persistence.violations import UniquenessViolation
from restql_core.pipeline import paranoid, writes
from restql_core.pipeline.errors import ConflictError, InternalError, NotFoundError, Reason, ValidationError
from restql_core.pipeline.partition import partition

from . import utils


class WriteOrchestratorTests(utils.BasePipelineTests):
    async def test_upsert_twice(self):
        users = self.model("users")
        first = await writes.upsert(self.store, users, {"email": "x@x.com", "name": "A"})
        self.assertTrue(first.created)
        self.assertEqual("A", first.row["name"])
        self.assertEqual("x@x.com", first.row["email"])

        second = await writes.upsert(self.store, users, {"email": "x@x.com", "name": "B"})
        self.assertFalse(second.created)
        self.assertEqual("B", second.row["name"])
        self.assertEqual(first.row["id"], second.row["id"])
        self.assertEqual(1, self.count("users"))

    async def test_upsert_without_identity(self):
        with self.assertRaises(ValidationError) as ctx:
            await writes.upsert(self.store, self.model("users"), {"name": "A"})
        self.assertEqual(Reason.NO_IDENTITY, ctx.exception.reason)
        self.assertEqual(0, self.count("users"))

    async def test_upsert_restores_soft_deleted_rows(self):
        for name, record in [("users", {"email": "a@b.c", "name": "A"}), ("tags", {"name": "red", "color": "#f00"})]:
            model = self.model(name)
            first = await writes.upsert(self.store, model, record)
            self.assertEqual(1, self.store.destroy(model, {"id": first.row["id"]}))
            self.assertIsNone(self.store.find(model, {"id": first.row["id"]}))

            outcome = await writes.upsert(self.store, model, record)
            self.assertFalse(outcome.created)
            self.assertFalse(paranoid.is_deleted(model, outcome.row))
            self.assertEqual(first.row["id"], outcome.row["id"])
            self.assertEqual(1, self.count(name))

    async def test_upsert_conflicting_other_index(self):
        seats = self.model("seats")
        await writes.upsert(self.store, seats, {"name": "Winterfell", "house_id": None})
        other = await writes.upsert(self.store, seats, {"name": "Dragonstone"})
        with self.assertRaises(ConflictError) as ctx:
            await writes.upsert(self.store, seats, {"name": "Winterfell"}, identity={"id": other.row["id"]})
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)

    async def test_create(self):
        users = self.model("users")
        row = await writes.create(self.store, users, {"id": 999, "email": "a@b.c"})
        self.assertNotEqual(999, row["id"])
        self.assertIs(True, row["active"])
        self.assertIsNone(row["deleted_at"])

        with self.assertRaises(ConflictError) as ctx:
            await writes.create(self.store, users, {"email": "a@b.c", "name": "B"})
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)
        self.assertEqual("users", ctx.exception.resource)

        overwritten = await writes.create(self.store, users, {"email": "a@b.c", "name": "B"}, ignore_duplicates=True)
        self.assertEqual(row["id"], overwritten["id"])
        self.assertEqual("B", overwritten["name"])
        self.assertEqual(1, self.count("users"))

    async def test_create_reuses_soft_deleted_rows(self):
        tags = self.model("tags")
        row = await writes.create(self.store, tags, {"name": "red"})
        self.store.destroy(tags, {"name": "red"})
        self.assertEqual(0, self.count("tags", include_soft_deleted=False))

        again = await writes.create(self.store, tags, {"name": "red", "color": "#f00"})
        self.assertEqual(row["id"], again["id"])
        self.assertEqual("#f00", again["color"])
        self.assertFalse(paranoid.is_deleted(tags, again))
        self.assertEqual(1, self.count("tags"))

    async def test_update(self):
        users = self.model("users")
        await writes.upsert(self.store, users, {"email": "a@b.c"})
        await writes.upsert(self.store, users, {"email": "d@e.f"})

        rows = await writes.update(self.store, users, {"id": 42, "name": "renamed"}, {"email": "a@b.c"})
        self.assertEqual(1, len(rows))
        self.assertEqual("renamed", rows[0]["name"])
        self.assertNotEqual(42, rows[0]["id"])

        with self.assertRaises(ConflictError) as ctx:
            await writes.update(self.store, users, {"email": "a@b.c"}, {"email": "d@e.f"})
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)
        self.assertIsNotNone(self.store.find(users, {"email": "d@e.f"}))

    async def test_update_ignores_soft_deleted_rows(self):
        users = self.model("users")
        row = (await writes.upsert(self.store, users, {"email": "a@b.c"})).row
        self.store.destroy(users, {"id": row["id"]})
        self.assertListEqual([], await writes.update(self.store, users, {"name": "X"}, {"id": row["id"]}))

    async def test_save(self):
        characters = self.model("characters")
        created = await writes.save(self.store, characters, {"name": "Jon"})
        self.assertTrue(created.created)

        houses = self.model("houses")
        first = await writes.save(self.store, houses, {"name": "Stark"})
        second = await writes.save(self.store, houses, {"name": "Stark", "words": "Winter is coming"})
        self.assertTrue(first.created)
        self.assertFalse(second.created)
        self.assertEqual(first.row["id"], second.row["id"])
        self.assertEqual("Winter is coming", second.row["words"])

    async def test_heterogeneous_batches(self):
        users = self.model("users")
        batch = [{"email": "a@b.c"}, {"email": "d@e.f", "name": "D"}]
        for operation in (writes.bulk_create, writes.bulk_upsert):
            with self.assertRaises(ValidationError) as ctx:
                await operation(self.store, users, batch)
            self.assertEqual(Reason.HETEROGENEOUS_BATCH, ctx.exception.reason)
        self.assertEqual(0, self.count("users"))

    async def test_bulk_create(self):
        users = self.model("users")
        rows = await writes.bulk_create(self.store, users, [{"email": f"user{i}@x.com"} for i in range(5)])
        self.assertEqual(5, len(rows))
        self.assertListEqual(sorted(row["id"] for row in rows), [row["id"] for row in rows])
        self.assertListEqual([], await writes.bulk_create(self.store, users, []))

    async def test_bulk_create_duplicates_within_batch(self):
        users = self.model("users")
        rows = await writes.bulk_create(self.store, users, [
            {"email": "a@x.com", "name": "first"},
            {"email": "b@x.com", "name": "B"},
            {"email": "a@x.com", "name": "last"}
        ])
        self.assertEqual(2, len(rows))
        self.assertListEqual(["a@x.com", "b@x.com"], sorted(row["email"] for row in rows))
        self.assertEqual("last", next(row for row in rows if row["email"] == "a@x.com")["name"])
        self.assertEqual(2, self.count("users"))

    async def test_bulk_create_restores_soft_deleted_rows(self):
        tags = self.model("tags")
        old = await writes.create(self.store, tags, {"name": "old"})
        self.store.destroy(tags, {"id": old["id"]})

        rows = await writes.bulk_create(self.store, tags, [{"name": "new"}, {"name": "old"}])
        self.assertEqual(2, len(rows))
        self.assertIn(old["id"], [row["id"] for row in rows])
        self.assertFalse(any(paranoid.is_deleted(tags, row) for row in rows))
        self.assertEqual(2, self.count("tags"))

    async def test_bulk_create_live_conflict(self):
        tags = self.model("tags")
        await writes.create(self.store, tags, {"name": "x"})
        with self.assertRaises(ConflictError) as ctx:
            await writes.bulk_create(self.store, tags, [{"name": "y"}, {"name": "x"}])
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)
        self.assertEqual(1, self.count("tags"))

        rows = await writes.bulk_create(self.store, tags, [{"name": "y"}, {"name": "x"}], ignore_duplicates=True)
        self.assertEqual(2, len(rows))
        self.assertEqual(2, self.count("tags"))

    async def test_bulk_create_without_identity(self):
        with self.assertRaises(ValidationError) as ctx:
            await writes.bulk_create(self.store, self.model("characters"), [{"name": "Jon"}])
        self.assertEqual(Reason.NO_IDENTITY, ctx.exception.reason)

    async def test_bulk_create_records_sharing_another_index(self):
        seats = self.model("seats")
        houses = self.model("houses")
        stark = await writes.create(self.store, houses, {"name": "Stark"})
        bolton = await writes.create(self.store, houses, {"name": "Bolton"})
        with self.assertRaises(ConflictError) as ctx:
            await writes.bulk_create(self.store, seats, [
                {"name": "Winterfell", "house_id": stark["id"]},
                {"name": "Moat Cailin", "house_id": stark["id"]}
            ])
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)
        self.assertEqual(0, self.count("seats"))

        rows = await writes.bulk_create(self.store, seats, [
            {"name": "Winterfell", "house_id": stark["id"]},
            {"name": "Moat Cailin", "house_id": bolton["id"]}
        ])
        self.assertListEqual(["Winterfell", "Moat Cailin"], [row["name"] for row in rows])

    async def test_bulk_create_composite_index(self):
        characters = self.model("characters")
        house = await writes.create(self.store, self.model("houses"), {"name": "Stark"})
        arya = await writes.create(self.store, characters, {"house_id": house["id"], "name": "Arya"})
        batch = [
            {"house_id": house["id"], "name": "Arya", "title": "Lady"},
            {"house_id": house["id"], "name": "Sansa", "title": None}
        ]

        with self.assertRaises(ConflictError) as ctx:
            await writes.bulk_create(self.store, characters, batch)
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)
        self.assertEqual(1, self.count("characters"))

        rows = await writes.bulk_create(self.store, characters, batch, ignore_duplicates=True)
        self.assertListEqual(["Arya", "Sansa"], [row["name"] for row in rows])
        self.assertEqual(arya["id"], rows[0]["id"])
        self.assertEqual("Lady", rows[0]["title"])
        self.assertEqual(2, self.count("characters"))

    async def test_bulk_create_failing_conflict_write(self):
        tags = self.model("tags")
        old = await writes.create(self.store, tags, {"name": "old"})
        self.store.destroy(tags, {"id": old["id"]})
        insert = self.store.insert

        def failing_insert(model, data, update_on_duplicate=None, conflict_fields=None):
            if update_on_duplicate is not None:
                raise UniquenessViolation("tags", fields={"name": "old"})
            return insert(model, data)

        self.store.insert = failing_insert
        with self.assertRaises(ConflictError) as ctx:
            await writes.bulk_create(self.store, tags, [{"name": "new"}, {"name": "old"}])
        self.assertEqual(Reason.DUPLICATE, ctx.exception.reason)

    async def test_bulk_create_violation_without_pending_record(self):
        attempts = []

        def failing_insert(model, data, update_on_duplicate=None, conflict_fields=None):
            attempts.append(list(data))
            raise UniquenessViolation("tags", fields={"name": "elsewhere"})

        self.store.insert = failing_insert
        with self.assertRaises(InternalError) as ctx:
            await writes.bulk_create(self.store, self.model("tags"), [{"name": "p"}])
        self.assertEqual(Reason.DESYNC, ctx.exception.reason)
        self.assertEqual(1, len(attempts))

    async def test_bulk_create_attempts_are_bounded(self):
        tags = self.model("tags")
        batch = [{"name": "a"}, {"name": "b"}, {"name": "c"}]
        for record in batch:
            row = await writes.create(self.store, tags, record)
            self.store.destroy(tags, {"id": row["id"]})
        attempts = []

        def failing_insert(model, data, update_on_duplicate=None, conflict_fields=None):
            attempts.append(list(data))
            raise UniquenessViolation("tags", fields={"name": data[0]["name"] if data else "a"})

        self.store.insert = failing_insert
        with self.assertRaises(InternalError) as ctx:
            await writes.bulk_create(self.store, tags, batch)
        self.assertEqual(Reason.DESYNC, ctx.exception.reason)
        self.assertEqual(len(batch) + 1, len(attempts))
        self.assertListEqual([], attempts[-1])

    async def test_bulk_upsert(self):
        users = self.model("users")
        rows = await writes.bulk_upsert(self.store, users, [
            {"email": "a@x.com", "name": "A"},
            {"email": "b@x.com", "name": "B"}
        ])
        self.assertEqual(2, len(rows))

        rows = await writes.bulk_upsert(self.store, users, [
            {"email": "a@x.com", "name": "A2"},
            {"email": "c@x.com", "name": "C"}
        ])
        self.assertListEqual(["A2", "C"], [row["name"] for row in rows])
        self.assertEqual(3, self.count("users"))

        with self.assertRaises(ValidationError) as ctx:
            await writes.bulk_upsert(self.store, users, [{"name": "nobody"}])
        self.assertEqual(Reason.NO_IDENTITY, ctx.exception.reason)

    async def test_find_or_upsert(self):
        tags = self.model("tags")
        stored = await writes.upsert(self.store, tags, {"name": "a", "color": "red"})

        found = await writes.find_or_upsert(self.store, tags, {"name": "a", "color": "blue"})
        self.assertFalse(found.created)
        self.assertEqual(stored.row["id"], found.row["id"])
        self.assertEqual("red", found.row["color"])

        created = await writes.find_or_upsert(self.store, tags, {"name": "b"})
        self.assertTrue(created.created)

        rows = await writes.bulk_find_or_upsert(self.store, tags, [{"name": "a"}, {"name": "c"}, {"name": "b"}])
        self.assertListEqual(["a", "b", "c"], sorted(row["name"] for row in rows))
        self.assertEqual(3, self.count("tags"))


class PartitionTests(utils.BasePipelineTests):
    async def test_partition(self):
        tags = self.model("tags")
        stored = (await writes.upsert(self.store, tags, {"name": "a"})).row

        result = await partition(self.store, tags, [{"name": "a"}, {"name": "b"}])
        self.assertListEqual([stored], result.existing_rows)
        self.assertListEqual([{"name": "b"}], result.new_rows)

    async def test_soft_deleted_and_unidentifiable_records_are_new(self):
        tags = self.model("tags")
        await writes.upsert(self.store, tags, {"name": "gone"})
        self.store.destroy(tags, {"name": "gone"})

        result = await partition(self.store, tags, [{"name": "gone"}, {"color": "red"}])
        self.assertListEqual([], result.existing_rows)
        self.assertListEqual([{"name": "gone"}, {"color": "red"}], result.new_rows)

    async def test_rows_are_matched_once(self):
        tags = self.model("tags")
        await writes.upsert(self.store, tags, {"name": "a"})
        result = await partition(self.store, tags, [{"name": "a"}, {"name": "a"}])
        self.assertEqual(1, len(result.existing_rows))
        self.assertListEqual([{"name": "a"}], result.new_rows)


class DispatchTests(utils.BasePipelineTests):
    async def test_payload_shapes(self):
        with self.assertRaises(ValidationError) as ctx:
            await execute(self.store, self.registry, "users", WriteKind.CREATE, [{"email": "a@b.c"}])
        self.assertEqual(Reason.INVALID_PAYLOAD, ctx.exception.reason)

        for kind in (WriteKind.BULK_CREATE, WriteKind.BULK_UPSERT, WriteKind.BULK_FIND_OR_UPSERT):
            self.assertTrue(kind.batch)
            with self.assertRaises(ValidationError):
                await execute(self.store, self.registry, "users", kind, {"email": "a@b.c"})
            with self.assertRaises(ValidationError):
                await execute(self.store, self.registry, "users", kind, ["a@b.c"])
        self.assertFalse(WriteKind.SAVE.batch)

        with self.assertRaises(NotFoundError) as ctx:
            await execute(self.store, self.registry, "dragons", WriteKind.CREATE, {"name": "Drogon"})
        self.assertEqual(Reason.UNKNOWN_RESOURCE, ctx.exception.reason)

    async def test_operations(self):
        outcome = await execute(self.store, self.registry, "users", WriteKind.CREATE, {"email": "a@b.c"})
        self.assertTrue(outcome.created)

        outcome = await execute(self.store, self.registry, "users", WriteKind.SAVE, {"email": "a@b.c", "name": "A"})
        self.assertFalse(outcome.created)
        self.assertEqual("A", outcome.row["name"])

        rows = await execute(
            self.store, self.registry, "users", WriteKind.UPDATE, {"name": "B"},
            scope={"email": "a@b.c"}
        )
        self.assertListEqual(["B"], [row["name"] for row in rows])

        rows = await execute(
            self.store, self.registry, "users", WriteKind.UPDATE, {"name": "C"},
            identity={"id": outcome.row["id"]}
        )
        self.assertListEqual(["C"], [row["name"] for row in rows])

        rows = await execute(self.store, self.registry, "users", WriteKind.BULK_CREATE, [{"email": "d@e.f"}])
        self.assertEqual(1, len(rows))


if __name__ == '__main__':
    _unittest.main()
