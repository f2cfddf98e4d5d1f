from django.db import models
from django.contrib.auth.models import (
    AbstractBaseUser,
    BaseUserManager,
    PermissionsMixin,
)
from django.utils import timezone
import uuid


class ParticipantManager(BaseUserManager):
    use_in_migrations = True

    def create_participant(self, email, password=None, **extra_fields):  # Creates a new participant with email and password
        if not email:
            raise ValueError("Email is required")
        email = self.normalize_email(email)
        participant = self.model(email=email, **extra_fields)
        participant.set_password(password)
        participant.save(using=self._db)
        return participant

    def create_user(self, email, password=None, **extra_fields):  # Alias used by Django auth tooling
        extra_fields.setdefault("role", "patient")
        return self.create_participant(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):  # Creates a superuser with admin privileges
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", "super_admin")
        return self.create_participant(email, password, **extra_fields)


class Participant(AbstractBaseUser, PermissionsMixin):
    ROLE_CHOICES = [
        ("patient", "Patient"),
        ("doctor", "Doctor"),
        ("hospital", "Hospital"),
        ("admin", "Admin"),
        ("super_admin", "Super Admin"),
    ]

    STAFF_ROLES = ("admin", "super_admin")

    uid = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    phone_number = models.CharField(max_length=20, blank=True, null=True)
    role = models.CharField(max_length=30, choices=ROLE_CHOICES)
    full_name = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ParticipantManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["role"]

    class Meta:
        db_table = "participants"
        indexes = [
            models.Index(fields=["role"], name="participant_role_idx"),
            models.Index(fields=["role", "is_active"], name="participant_role_active_idx"),
        ]

    def __str__(self):
        return self.full_name or self.email

    @property
    def is_platform_staff(self):
        return self.is_staff or self.is_superuser or self.role in self.STAFF_ROLES

    @property
    def first_name(self):
        if self.full_name:
            return self.full_name.split()[0] if self.full_name.split() else ""
        return ""
