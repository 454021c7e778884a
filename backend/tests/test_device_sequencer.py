import threading
from types import SimpleNamespace
from unittest import TestCase

from db_support import SqliteDatabase, add_plant, add_template

from app.core.errors import ConfigurationError
from app.repositories.device_sequences import get_last_sequence, list_plant_sequences
from app.services.device_sequencer import DeviceSequencer


class DeviceSequencerTests(TestCase):
    def setUp(self) -> None:
        self.database = SqliteDatabase()
        self.sequencer = DeviceSequencer()
        with self.database.session() as db:
            self.plant = add_plant(db, code="RAJ1", mqtt_base_topic="solar/raj1")
            self.inverter = add_template(db, shortform="INV")
            self.meter = add_template(db, shortform="MTR", device_type="METER")

    def tearDown(self) -> None:
        self.database.close()

    def test_first_allocation_starts_at_one_and_increments(self) -> None:
        with self.database.session() as db:
            first = self.sequencer.allocate(db, plant=self.plant, template=self.inverter)
            second = self.sequencer.allocate(db, plant=self.plant, template=self.inverter)
            db.commit()

        self.assertEqual((first.sequence, first.identifier), (1, "INV_1"))
        self.assertEqual(first.topic, "solar/raj1/INV_1")
        self.assertEqual((second.sequence, second.identifier), (2, "INV_2"))

    def test_counters_are_independent_per_template(self) -> None:
        with self.database.session() as db:
            self.sequencer.allocate(db, plant=self.plant, template=self.inverter)
            self.sequencer.allocate(db, plant=self.plant, template=self.inverter)
            meter = self.sequencer.allocate(db, plant=self.plant, template=self.meter)
            db.commit()

            sequences = {row.shortform: row.last_sequence for row in list_plant_sequences(db, self.plant.id)}

        self.assertEqual(meter.identifier, "MTR_1")
        self.assertEqual(sequences, {"INV": 2, "MTR": 1})

    def test_rolled_back_allocation_releases_the_number(self) -> None:
        with self.database.session() as db:
            self.sequencer.allocate(db, plant=self.plant, template=self.inverter)
            db.rollback()
            again = self.sequencer.allocate(db, plant=self.plant, template=self.inverter)
            db.commit()

        self.assertEqual(again.sequence, 1)

    def test_missing_base_topic_fails_before_touching_counter(self) -> None:
        with self.database.session() as db:
            bare = add_plant(db, code="BARE1", mqtt_base_topic=None)

            with self.assertRaises(ConfigurationError):
                self.sequencer.allocate(db, plant=bare, template=self.inverter)
            db.rollback()

            self.assertIsNone(get_last_sequence(db, plant_id=bare.id, template_id=self.inverter.id))

    def test_concurrent_allocations_never_repeat(self) -> None:
        plant = SimpleNamespace(id=self.plant.id, code="RAJ1", mqtt_base_topic="solar/raj1")
        template = SimpleNamespace(id=self.inverter.id, shortform="INV")
        per_worker: dict[int, list[int]] = {}
        errors: list[Exception] = []

        def worker(index: int) -> None:
            allocated: list[int] = []
            try:
                for _ in range(5):
                    with self.database.session() as db:
                        identity = self.sequencer.allocate(db, plant=plant, template=template)
                        db.commit()
                    allocated.append(identity.sequence)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            per_worker[index] = allocated

        threads = [threading.Thread(target=worker, args=(index,)) for index in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        values = [value for allocated in per_worker.values() for value in allocated]
        self.assertEqual(sorted(values), list(range(1, 31)))
        for allocated in per_worker.values():
            self.assertEqual(allocated, sorted(allocated))
