from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import select, update

from db_support import SqliteDatabase, add_plant, add_template, allow

from app.core.errors import CycleError, HierarchyViolation, NotFoundError, StaleHierarchyError
from app.db.models import Device, DeviceHierarchyHistory
from app.repositories.devices import list_device_history
from app.services.device_sequencer import DeviceSequencer
from app.services.devices import DeviceService
from app.services.hierarchy import HierarchyService


class HierarchyTestCase(TestCase):
    def setUp(self) -> None:
        self.database = SqliteDatabase()
        self.hierarchy = HierarchyService()
        self.devices = DeviceService(sequencer=DeviceSequencer(), hierarchy_service=self.hierarchy)
        with self.database.session() as db:
            self.plant = add_plant(db, code="RAJ1", mqtt_base_topic="solar/raj1")
            self.inverter = add_template(db, shortform="INV")
            self.combiner = add_template(db, shortform="CMB", device_type="COMBINER")
            self.string = add_template(db, shortform="STR", device_type="STRING")
            allow(db, parent=None, child=self.inverter)
            allow(db, parent=self.inverter, child=self.combiner)
            allow(db, parent=self.combiner, child=self.string)
            allow(db, parent=self.combiner, child=self.combiner)

    def tearDown(self) -> None:
        self.database.close()

    def _create(self, db, template, parent=None) -> Device:
        return self.devices.create_device_from_template(
            db,
            plant_id=self.plant.id,
            template_id=template.id,
            parent_device_id=parent.id if parent is not None else None,
        )

    def _parents(self, db) -> dict[str, int | None]:
        rows = db.execute(select(Device.device_identifier, Device.parent_device_id)).all()
        return {row.device_identifier: row.parent_device_id for row in rows}


class MoveDeviceTests(HierarchyTestCase):
    def test_two_roots_get_distinct_topics_and_same_template_move_is_refused(self) -> None:
        with self.database.session() as db:
            first = self._create(db, self.inverter)
            second = self._create(db, self.inverter)

            self.assertEqual(first.mqtt_topic, "solar/raj1/INV_1")
            self.assertEqual(second.mqtt_topic, "solar/raj1/INV_2")
            with self.assertRaises(HierarchyViolation):
                self.hierarchy.move_device(db, device_id=second.id, new_parent_id=first.id)

            self.assertIsNone(self._parents(db)["INV_2"])

    def test_move_under_descendant_is_a_cycle_and_leaves_tree_unchanged(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            outer = self._create(db, self.combiner, inverter)
            inner = self._create(db, self.combiner, outer)
            before = self._parents(db)

            with self.assertRaises(CycleError):
                self.hierarchy.move_device(db, device_id=outer.id, new_parent_id=inner.id)
            with self.assertRaises(CycleError):
                self.hierarchy.move_device(db, device_id=outer.id, new_parent_id=outer.id)

            self.assertEqual(self._parents(db), before)

    def test_cycle_is_reported_even_without_a_matching_rule(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, inverter)

            with self.assertRaises(CycleError):
                self.hierarchy.move_device(db, device_id=inverter.id, new_parent_id=combiner.id)

    def test_successful_move_bumps_version_and_appends_history(self) -> None:
        with self.database.session() as db:
            first = self._create(db, self.inverter)
            second = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, first)

            result = self.hierarchy.move_device(
                db,
                device_id=combiner.id,
                new_parent_id=second.id,
                changed_by="ops",
                reason="rewired",
            )

            self.assertTrue(result.changed)
            self.assertEqual(result.previous_parent_id, first.id)
            self.assertEqual(result.hierarchy_version, 2)
            moved = db.get(Device, combiner.id)
            self.assertEqual(moved.parent_device_id, second.id)
            self.assertEqual(moved.hierarchy_version, 2)
            self.assertEqual(moved.mqtt_topic, "solar/raj1/CMB_1")
            history = list_device_history(db, combiner.id)
            self.assertEqual([entry.hierarchy_version for entry in history], [1, 2])
            self.assertEqual(history[-1].parent_device_id, second.id)
            self.assertEqual(history[-1].changed_by, "ops")
            self.assertEqual(history[-1].change_reason, "rewired")

    def test_move_to_current_parent_is_a_no_op(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, inverter)

            result = self.hierarchy.move_device(db, device_id=combiner.id, new_parent_id=inverter.id)

            self.assertFalse(result.changed)
            self.assertEqual(result.hierarchy_version, 1)
            self.assertEqual(len(list_device_history(db, combiner.id)), 1)

    def test_move_to_root_requires_root_rule(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, inverter)

            with self.assertRaises(HierarchyViolation):
                self.hierarchy.move_device(db, device_id=combiner.id, new_parent_id=None)

    def test_parent_from_another_plant_is_rejected(self) -> None:
        with self.database.session() as db:
            other = add_plant(db, code="OTHER", mqtt_base_topic="solar/other")
            foreign = self.devices.create_device_from_template(
                db, plant_id=other.id, template_id=self.inverter.id
            )
            local = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, local)

            with self.assertRaises(HierarchyViolation):
                self.hierarchy.move_device(db, device_id=combiner.id, new_parent_id=foreign.id)
            with self.assertRaises(NotFoundError):
                self.hierarchy.move_device(db, device_id=combiner.id, new_parent_id=9999)
            with self.assertRaises(NotFoundError):
                self.hierarchy.move_device(db, device_id=9999, new_parent_id=None)

    def test_concurrent_version_bump_raises_stale_error(self) -> None:
        with self.database.session() as db:
            first = self._create(db, self.inverter)
            second = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, first)

            with patch("app.services.hierarchy.reparent_device_guarded", return_value=0):
                with self.assertRaises(StaleHierarchyError):
                    self.hierarchy.move_device(db, device_id=combiner.id, new_parent_id=second.id)

            self.assertEqual(self._parents(db)["CMB_1"], first.id)
            self.assertEqual(len(db.scalars(select(DeviceHierarchyHistory)).all()), 3)


class HierarchyQueryTests(HierarchyTestCase):
    def _build_chain(self, db, depth: int) -> list[Device]:
        chain = [self._create(db, self.inverter)]
        for _ in range(depth):
            chain.append(self._create(db, self.combiner, chain[-1]))
        return chain

    def test_descendants_cover_arbitrary_depth(self) -> None:
        with self.database.session() as db:
            chain = self._build_chain(db, 12)
            leaf = self._create(db, self.string, chain[-1])

            descendants = self.hierarchy.get_descendants(db, chain[0].id)

            self.assertEqual(len(descendants), 13)
            self.assertIn(leaf.id, {link.id for link in descendants})
            self.assertEqual(self.hierarchy.get_descendants(db, leaf.id), [])

    def test_path_runs_root_to_device(self) -> None:
        with self.database.session() as db:
            chain = self._build_chain(db, 3)

            path = self.hierarchy.get_path(db, chain[-1].id)

            self.assertEqual([link.id for link in path], [device.id for device in chain])

    def test_path_stops_at_parent_outside_plant(self) -> None:
        with self.database.session() as db:
            other = add_plant(db, code="OTHER", mqtt_base_topic="solar/other")
            foreign = self.devices.create_device_from_template(
                db, plant_id=other.id, template_id=self.inverter.id
            )
            chain = self._build_chain(db, 1)
            db.execute(
                update(Device).where(Device.id == chain[0].id).values(parent_device_id=foreign.id)
            )
            db.commit()

            path = self.hierarchy.get_path(db, chain[1].id)

            self.assertEqual([link.id for link in path], [chain[0].id, chain[1].id])

    def test_siblings_share_parent_or_root_level(self) -> None:
        with self.database.session() as db:
            first = self._create(db, self.inverter)
            second = self._create(db, self.inverter)
            left = self._create(db, self.combiner, first)
            right = self._create(db, self.combiner, first)

            self.assertEqual([link.id for link in self.hierarchy.get_device_siblings(db, left.id)], [right.id])
            self.assertEqual([link.id for link in self.hierarchy.get_device_siblings(db, first.id)], [second.id])

    def test_tree_nests_children_under_roots(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, inverter)
            self._create(db, self.string, combiner)

            tree = self.hierarchy.get_plant_hierarchy_tree(db, self.plant.id)

            self.assertEqual(len(tree), 1)
            self.assertEqual(tree[0]["device_identifier"], "INV_1")
            self.assertEqual(tree[0]["children"][0]["device_identifier"], "CMB_1")
            self.assertEqual(tree[0]["children"][0]["children"][0]["mqtt_topic"], "solar/raj1/STR_1")

    def test_stats_summarize_plant(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            self._create(db, self.inverter)
            combiner = self._create(db, self.combiner, inverter)
            self._create(db, self.string, combiner)

            stats = self.hierarchy.get_hierarchy_stats(db, self.plant.id)

            self.assertEqual(stats.total_devices, 4)
            self.assertEqual(stats.root_devices, 2)
            self.assertEqual(stats.max_depth, 2)
            self.assertEqual(stats.devices_by_type, {"INVERTER": 2, "COMBINER": 1, "STRING": 1})
            self.assertEqual(stats.devices_by_status, {"OFFLINE": 4})
            self.assertEqual(stats.avg_children_per_device, 0.5)

    def test_stats_count_dangling_parent_as_root(self) -> None:
        with self.database.session() as db:
            other = add_plant(db, code="OTHER", mqtt_base_topic="solar/other")
            foreign = self.devices.create_device_from_template(
                db, plant_id=other.id, template_id=self.inverter.id
            )
            inverter = self._create(db, self.inverter)
            self._create(db, self.combiner, inverter)
            stray = self._create(db, self.inverter)
            db.execute(update(Device).where(Device.id == stray.id).values(parent_device_id=foreign.id))
            db.commit()

            stats = self.hierarchy.get_hierarchy_stats(db, self.plant.id)
            tree = self.hierarchy.get_plant_hierarchy_tree(db, self.plant.id)

            self.assertEqual(stats.root_devices, 2)
            self.assertEqual(stats.root_devices, len(tree))
            self.assertEqual(stats.max_depth, 1)

    def test_unknown_plant_raises_for_tree_and_stats(self) -> None:
        with self.database.session() as db:
            with self.assertRaises(NotFoundError):
                self.hierarchy.get_plant_hierarchy_tree(db, 404)
            with self.assertRaises(NotFoundError):
                self.hierarchy.get_hierarchy_stats(db, 404)


class ValidateHierarchyTests(HierarchyTestCase):
    def test_clean_plant_is_valid(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            self._create(db, self.combiner, inverter)

            report = self.hierarchy.validate_hierarchy(db, self.plant.id)

            self.assertTrue(report.is_valid)
            self.assertEqual(report.total_devices, 2)
            self.assertEqual(report.issues_found, 0)

    def test_drift_is_reported_not_raised(self) -> None:
        with self.database.session() as db:
            other = add_plant(db, code="OTHER", mqtt_base_topic="solar/other")
            foreign = self.devices.create_device_from_template(
                db, plant_id=other.id, template_id=self.inverter.id
            )
            inverter = self._create(db, self.inverter)
            outer = self._create(db, self.combiner, inverter)
            inner = self._create(db, self.combiner, outer)
            orphan = self._create(db, self.inverter)

            db.execute(update(Device).where(Device.id == outer.id).values(parent_device_id=inner.id))
            db.execute(update(Device).where(Device.id == orphan.id).values(parent_device_id=foreign.id))
            db.execute(update(Device).where(Device.id == inverter.id).values(mqtt_topic="legacy/INV_1"))
            db.commit()

            report = self.hierarchy.validate_hierarchy(db, self.plant.id)

            issues = {(issue.type, issue.device_id) for issue in report.issues}
            self.assertFalse(report.is_valid)
            self.assertIn(("ORPHANED", orphan.id), issues)
            self.assertIn(("CIRCULAR_REFERENCE", outer.id), issues)
            self.assertIn(("CIRCULAR_REFERENCE", inner.id), issues)
            self.assertIn(("TOPIC_MISMATCH", inverter.id), issues)
            self.assertEqual(report.issues_found, len(report.issues))

    def test_attachment_without_rule_is_flagged(self) -> None:
        with self.database.session() as db:
            inverter = self._create(db, self.inverter)
            string = self._create(db, self.string, self._create(db, self.combiner, inverter))
            db.execute(update(Device).where(Device.id == string.id).values(parent_device_id=inverter.id))
            db.commit()

            report = self.hierarchy.validate_hierarchy(db, self.plant.id)

            self.assertEqual(
                [(issue.type, issue.device_id) for issue in report.issues],
                [("UNSANCTIONED_ATTACHMENT", string.id)],
            )

    def test_unknown_plant_returns_invalid_report(self) -> None:
        with self.database.session() as db:
            report = self.hierarchy.validate_hierarchy(db, 404)

        self.assertFalse(report.is_valid)
        self.assertEqual(report.issues[0].type, "PLANT_NOT_FOUND")
