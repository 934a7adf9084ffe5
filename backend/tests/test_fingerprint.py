"""Tests for request fingerprinting."""

from gateway.fingerprint import canonical_payload, compute_fingerprint, identity_scoped
from schemas.generation import Intent

from conftest import make_request


class TestComputeFingerprint:
    def test_deterministic(self):
        assert compute_fingerprint(make_request(), "v1") == compute_fingerprint(make_request(), "v1")

    def test_hex_sha256(self):
        fingerprint = compute_fingerprint(make_request(), "v1")
        assert len(fingerprint) == 64
        int(fingerprint, 16)

    def test_set_order_does_not_matter(self):
        a = make_request(equipment=["dumbbell", "bodyweight"])
        b = make_request(equipment=["bodyweight", "dumbbell"])
        assert compute_fingerprint(a, "v1") == compute_fingerprint(b, "v1")

    def test_tag_case_and_whitespace_normalized(self):
        a = make_request(equipment=[" Bodyweight "])
        b = make_request(equipment=["bodyweight"])
        assert compute_fingerprint(a, "v1") == compute_fingerprint(b, "v1")

    def test_integer_and_float_targets_match(self):
        a = make_request(target_value=30)
        b = make_request(target_value=30.0)
        assert compute_fingerprint(a, "v1") == compute_fingerprint(b, "v1")

    def test_constraints_change_fingerprint(self):
        base = compute_fingerprint(make_request(), "v1")
        assert compute_fingerprint(make_request(experience_level="advanced"), "v1") != base
        assert compute_fingerprint(make_request(intent=Intent.CORE), "v1") != base
        assert compute_fingerprint(make_request(target_value=45), "v1") != base

    def test_schema_version_changes_fingerprint(self):
        assert compute_fingerprint(make_request(), "v1") != compute_fingerprint(make_request(), "v2")


class TestIdentityScoping:
    def test_identity_ignored_without_exclusions(self):
        a = make_request(identity="alice")
        b = make_request(identity="bob")
        assert compute_fingerprint(a, "v1") == compute_fingerprint(b, "v1")

    def test_exclusions_scope_to_identity(self):
        a = make_request(identity="alice", exclusions=["knee"])
        b = make_request(identity="bob", exclusions=["knee"])
        assert identity_scoped(a)
        assert compute_fingerprint(a, "v1") != compute_fingerprint(b, "v1")

    def test_exclusion_scoping_can_be_disabled(self):
        a = make_request(identity="alice", exclusions=["knee"])
        b = make_request(identity="bob", exclusions=["knee"])
        assert compute_fingerprint(a, "v1", scope_on_exclusions=False) == \
            compute_fingerprint(b, "v1", scope_on_exclusions=False)

    def test_scoped_categories(self):
        a = make_request(intent=Intent.BREAKFAST, identity="alice", equipment=[])
        b = make_request(intent=Intent.BREAKFAST, identity="bob", equipment=[])
        assert compute_fingerprint(a, "v1") == compute_fingerprint(b, "v1")
        assert compute_fingerprint(a, "v1", scoped_categories=["meal"]) != \
            compute_fingerprint(b, "v1", scoped_categories=["meal"])

    def test_anonymous_never_scoped(self):
        request = make_request(exclusions=["knee"])
        assert not identity_scoped(request, scoped_categories=["workout"])
        assert canonical_payload(request, "v1", include_identity=False)["identity"] is None
