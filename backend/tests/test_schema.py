"""Schema and settings surface checks."""

from schoolmed.core.config import Settings
from schoolmed.models import AdministrationRecord


def test_administration_keeps_its_staff_member() -> None:
    column = AdministrationRecord.__table__.c.administered_by_id
    (foreign_key,) = column.foreign_keys
    assert column.nullable is False
    assert foreign_key.ondelete == "RESTRICT"


def test_rate_limit_settings_are_the_ones_in_use() -> None:
    limits = {name for name in Settings.model_fields if name.startswith("rate_limit")}
    assert limits == {"rate_limit_writes_per_minute"}
