from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from db_support import SqliteDatabase, add_template, allow
from iot_fakes import FakeClientFactory, FakeIotClient, client_error, live_settings

from app.core.config import Settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models import Device, DeviceSequence, Plant
from app.services.credential_vault import CredentialVault
from app.services.device_sequencer import DeviceSequencer
from app.services.devices import DeviceService
from app.services.hierarchy import HierarchyService
from app.services.plants import PlantService
from app.services.provisioning import ProvisioningService


class PlantServiceTestCase(TestCase):
    def setUp(self) -> None:
        self.database = SqliteDatabase()

    def tearDown(self) -> None:
        self.database.close()

    def _service(self, settings: Settings, client: FakeIotClient | None = None) -> PlantService:
        self.factory = FakeClientFactory(client)
        vault = CredentialVault(settings=settings)
        provisioning = ProvisioningService(
            settings=settings,
            client_factory=self.factory,  # type: ignore[arg-type]
            vault=vault,
        )
        return PlantService(provisioning_service=provisioning, vault=vault)


class CreatePlantTests(PlantServiceTestCase):
    def test_live_create_stores_references_and_sealed_credentials(self) -> None:
        service = self._service(live_settings())
        with self.database.session() as db:
            outcome = service.create_plant(
                db,
                code="RAJ1",
                name="Rajasthan One",
                mqtt_base_topic="solar/raj1/",
                capacity_kw=1200.0,
            )

            plant = outcome.plant
            self.assertIsNone(outcome.error)
            self.assertEqual(outcome.mode, "live")
            self.assertEqual(plant.mqtt_base_topic, "solar/raj1")
            self.assertEqual(plant.iot_provisioning_status, "provisioned")
            self.assertEqual(plant.iot_thing_name, "solar-plant-RAJ1")
            self.assertEqual(plant.iot_data_topic, "solar/RAJ1/data")
            self.assertNotIn("BEGIN", plant.encrypted_private_key or "")

            credentials = service.get_plant_credentials(db, plant.id)
            self.assertEqual(credentials.private_key, outcome.provisioning.private_key)

    def test_failed_provisioning_keeps_plant_as_failed(self) -> None:
        client = FakeIotClient(fail_on={"create_policy": client_error("LimitExceededException", "CreatePolicy")})
        service = self._service(live_settings(), client)
        with self.database.session() as db:
            outcome = service.create_plant(
                db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
            )

            stored = db.get(Plant, outcome.plant.id)
            self.assertEqual(outcome.error.step, "create_policy")
            self.assertEqual(stored.iot_provisioning_status, "failed")
            self.assertIn("create_policy", stored.iot_last_error)
            self.assertIsNone(stored.iot_thing_name)
            self.assertIsNone(stored.encrypted_certificate_pem)
            self.assertEqual(client.things, set())

            with self.assertRaises(NotFoundError):
                service.get_plant_credentials(db, stored.id)

    def test_failed_plant_can_be_reprovisioned(self) -> None:
        client = FakeIotClient(fail_on={"create_topic_rule": client_error("ThrottlingException", "CreateTopicRule")})
        service = self._service(live_settings(), client)
        with self.database.session() as db:
            outcome = service.create_plant(
                db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
            )
            client.fail_on.clear()

            retried = service.reprovision_plant(db, outcome.plant.id)

            self.assertIsNone(retried.error)
            self.assertEqual(retried.plant.iot_provisioning_status, "provisioned")
            self.assertIsNone(retried.plant.iot_last_error)
            with self.assertRaises(ConflictError):
                service.reprovision_plant(db, outcome.plant.id)

    def test_store_failure_tears_down_live_identity(self) -> None:
        client = FakeIotClient()
        service = self._service(live_settings(), client)
        store_error = OperationalError("UPDATE plants", {}, Exception("database is locked"))
        with self.database.session() as db:
            with patch("app.services.plants.store_iot_references", side_effect=store_error):
                with self.assertRaises(OperationalError):
                    service.create_plant(
                        db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
                    )

            self.assertEqual(client.things, set())
            self.assertEqual(client.certificates, {})
            self.assertEqual(client.policies, {})
            self.assertEqual(client.rules, {})
            stored = db.scalars(select(Plant).where(Plant.code == "RAJ1")).one()
            self.assertEqual(stored.iot_provisioning_status, "not_provisioned")
            self.assertIsNone(stored.iot_thing_name)

            retried = service.reprovision_plant(db, stored.id)
            self.assertIsNone(retried.error)
            self.assertEqual(client.things, {"solar-plant-RAJ1"})

    def test_rule_groups_messages_by_plant_id(self) -> None:
        client = FakeIotClient()
        service = self._service(live_settings(), client)
        with self.database.session() as db:
            outcome = service.create_plant(
                db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
            )

        payload = client.rules["solar_plant_rule_RAJ1"]
        self.assertEqual(payload["actions"][0]["sqs"]["messageGroupId"], str(outcome.plant.id))

    def test_simulated_create_never_calls_aws(self) -> None:
        service = self._service(live_settings(use_mock_data=True))
        with self.database.session() as db:
            outcome = service.create_plant(
                db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
            )

        self.assertEqual(self.factory.requests, [])
        self.assertEqual(outcome.plant.iot_provisioning_status, "simulated")
        self.assertEqual(outcome.plant.iot_policy_name, "solar-plant-policy-RAJ1")

    def test_invalid_and_duplicate_codes_are_rejected(self) -> None:
        service = self._service(live_settings(use_mock_data=True))
        with self.database.session() as db:
            with self.assertRaises(ValidationError):
                service.create_plant(db, code="raj1", name="Lower", mqtt_base_topic="solar/raj1")
            with self.assertRaises(ValidationError):
                service.create_plant(db, code="RAJ1", name="Wild", mqtt_base_topic="solar/#")

            service.create_plant(db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1")
            with self.assertRaises(ConflictError):
                service.create_plant(db, code="RAJ1", name="Again", mqtt_base_topic="solar/raj1b")


class UpdateAndDeletePlantTests(PlantServiceTestCase):
    def _plant_with_device(self, db, service: PlantService) -> Plant:
        plant = service.create_plant(
            db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
        ).plant
        inverter = add_template(db, shortform="INV")
        allow(db, parent=None, child=inverter)
        devices = DeviceService(sequencer=DeviceSequencer(), hierarchy_service=HierarchyService())
        devices.create_device_from_template(db, plant_id=plant.id, template_id=inverter.id)
        return plant

    def test_base_topic_change_is_refused_once_devices_exist(self) -> None:
        service = self._service(live_settings(use_mock_data=True))
        with self.database.session() as db:
            plant = self._plant_with_device(db, service)

            with self.assertRaises(ConflictError):
                service.update_plant(db, plant.id, mqtt_base_topic="solar/other")

            updated = service.update_plant(db, plant.id, name="Renamed", mqtt_base_topic="solar/raj1/")
            self.assertEqual(updated.name, "Renamed")
            self.assertEqual(updated.mqtt_base_topic, "solar/raj1")

    def test_delete_removes_plant_rows_and_iot_identity(self) -> None:
        service = self._service(live_settings())
        with self.database.session() as db:
            plant = self._plant_with_device(db, service)

            report = service.delete_plant(db, plant.id)

            self.assertIsNone(report.deprovisioning_error)
            self.assertEqual(report.deleted_rows["devices"], 1)
            self.assertEqual(report.deleted_rows["plants"], 1)
            self.assertEqual(db.scalar(select(func.count(Device.id))), 0)
            self.assertEqual(db.scalar(select(func.count(DeviceSequence.id))), 0)
            self.assertIsNone(db.get(Plant, plant.id))
        self.assertEqual(self.factory.client.things, set())

    def test_delete_survives_partial_deprovisioning_failure(self) -> None:
        client = FakeIotClient()
        service = self._service(live_settings(), client)
        with self.database.session() as db:
            plant = self._plant_with_device(db, service)
            client.fail_on = {"delete_thing": client_error("InvalidRequestException", "DeleteThing")}

            report = service.delete_plant(db, plant.id)

            self.assertIsNotNone(report.deprovisioning_error)
            self.assertEqual(
                [step for step, _ in report.deprovisioning_error.failed_steps], ["delete_thing"]
            )
            self.assertEqual(report.deleted_rows["plants"], 1)
            self.assertIsNone(db.get(Plant, plant.id))

    def test_unknown_plant(self) -> None:
        service = self._service(live_settings(use_mock_data=True))
        with self.database.session() as db:
            with self.assertRaises(NotFoundError):
                service.delete_plant(db, 404)
            with self.assertRaises(NotFoundError):
                service.get_thing_shadow(db, 404)


class ThingShadowTests(PlantServiceTestCase):
    def test_desired_state_round_trips_through_shadow(self) -> None:
        service = self._service(live_settings())
        with self.database.session() as db:
            plant = service.create_plant(
                db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
            ).plant

            service.update_desired_state(db, plant.id, {"export_limit_kw": 500})
            shadow = service.get_thing_shadow(db, plant.id)

        self.assertEqual(shadow, {"state": {"desired": {"export_limit_kw": 500}}})

    def test_simulated_shadow_echoes_desired_state(self) -> None:
        service = self._service(live_settings(use_mock_data=True))
        with self.database.session() as db:
            plant = service.create_plant(
                db, code="RAJ1", name="Rajasthan One", mqtt_base_topic="solar/raj1"
            ).plant

            echoed = service.update_desired_state(db, plant.id, {"mode": "curtail"})

        self.assertEqual(echoed, {"state": {"desired": {"mode": "curtail"}}})
        self.assertEqual(self.factory.requests, [])
