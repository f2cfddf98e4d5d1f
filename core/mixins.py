import uuid
from django.db import models
from django.utils import timezone


class VersionedModel(models.Model):
    """
    Abstract base for ledger models.

    Features:
    - UUID primary keys so identifiers can be shared with gateways and clients
    - Version counter bumped on every ORM save

    Bulk ``QuerySet.update()`` calls bypass ``save()``; code that moves rows
    with conditional updates bumps ``version`` itself with an ``F`` expression.

    Usage:
        class MyModel(VersionedModel):
            name = models.CharField(max_length=100)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Global unique identifier"
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When this record was last modified"
    )

    version = models.IntegerField(
        default=1,
        help_text="Version number for conflict detection"
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        # Increment version on update (not on create)
        if not self._state.adding and not kwargs.get('force_insert'):
            self.version += 1
        super().save(*args, **kwargs)
