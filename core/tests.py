import tempfile
from io import StringIO

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase

from .logging_config import get_logging_config
from .models import Participant


class ParticipantModelTest(TestCase):  # ParticipantModelTest class implementation
    def test_create_user_defaults_to_patient(self):  # Test create user defaults to patient
        participant = Participant.objects.create_user(email="Someone@Test.com", password="test123")
        self.assertEqual(participant.role, "patient")
        self.assertEqual(participant.email, "Someone@test.com")
        self.assertTrue(participant.check_password("test123"))
        self.assertFalse(participant.is_platform_staff)

    def test_create_superuser(self):  # Test create superuser
        admin = Participant.objects.create_superuser(email="root@test.com", password="test123")
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_superuser)
        self.assertEqual(admin.role, "super_admin")
        self.assertTrue(admin.is_platform_staff)

    def test_staff_roles(self):  # Test staff roles
        ops = Participant.objects.create_user(email="ops@test.com", password="test123", role="admin")
        hospital = Participant.objects.create_user(email="h@test.com", password="test123", role="hospital")
        self.assertTrue(ops.is_platform_staff)
        self.assertFalse(hospital.is_platform_staff)

    def test_email_required(self):  # Test email required
        with self.assertRaises(ValueError):
            Participant.objects.create_user(email="", password="test123")


class LoggingConfigTest(SimpleTestCase):  # LoggingConfigTest class implementation
    def test_console_only_without_files(self):  # Test console only without files
        config = get_logging_config("/tmp/medipay", use_files=False)
        self.assertEqual(set(config["handlers"]), {"console"})
        self.assertIn("payments", config["loggers"])

    def test_file_handlers(self):  # Test file handlers
        with tempfile.TemporaryDirectory() as base_dir:
            config = get_logging_config(base_dir, region="in", use_files=True)
        self.assertIn("payments_file", config["handlers"])
        self.assertEqual(config["handlers"]["payments_file"]["formatter"], "json")


class MigrationStateTest(TestCase):  # MigrationStateTest class implementation
    def test_models_match_migrations(self):  # Test models match migrations
        self.assertTrue(Participant.objects.use_in_migrations)
        output = StringIO()
        try:
            call_command("makemigrations", "--check", "--dry-run", stdout=output, stderr=output)
        except SystemExit:
            self.fail(f"Model changes are missing from migrations:\n{output.getvalue()}")
