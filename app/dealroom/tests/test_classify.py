from __future__ import annotations

from dealroom.field_registry import FIELDS, CanonicalKey, coerce_key, field_registry_payload
from dealroom.pipeline.classify import (
    FieldDescriptor,
    classify_descriptor,
    classify_signals,
    classify_text,
    is_sensitive_descriptor,
    resolve_key,
)


def test_exact_labels() -> None:
    assert classify_text("Work Email Address") == CanonicalKey.EMAIL
    assert classify_text("Company") == CanonicalKey.COMPANY
    assert classify_text("Phone Number") == CanonicalKey.PHONE
    assert classify_text("Last Name") == CanonicalKey.LAST_NAME
    assert classify_text("Zip") == CanonicalKey.POSTAL_CODE


def test_camel_case_names() -> None:
    assert classify_text("firstName") == CanonicalKey.FIRST_NAME
    assert classify_text("lastName") == CanonicalKey.LAST_NAME


def test_exact_match_ignores_table_order() -> None:
    reversed_fields = list(reversed(FIELDS))
    assert classify_signals(["Email Address"], reversed_fields) == CanonicalKey.EMAIL
    assert classify_signals(["Email Address"], FIELDS) == CanonicalKey.EMAIL


def test_regex_pass() -> None:
    assert classify_text("Name") == CanonicalKey.FULL_NAME
    assert classify_text("Your firm") == CanonicalKey.COMPANY
    assert classify_text("State") == CanonicalKey.STATE


def test_joined_tokens_match_only_at_word_boundaries() -> None:
    assert classify_text("Legal Name") == CanonicalKey.FULL_NAME
    assert classify_text("F Name") == CanonicalKey.FIRST_NAME
    assert classify_text("Family Name") == CanonicalKey.LAST_NAME
    assert classify_text("Principal Name") not in (CanonicalKey.FIRST_NAME, CanonicalKey.LAST_NAME)
    assert classify_text("Chief Name") not in (CanonicalKey.FIRST_NAME, CanonicalKey.LAST_NAME)


def test_fuzzy_pass() -> None:
    assert classify_text("Electronic Mail") == CanonicalKey.EMAIL


def test_no_match() -> None:
    assert classify_text("Contact Info") is None
    assert classify_text("") is None


def test_primary_signals_beat_context() -> None:
    descriptor = FieldDescriptor(label="Company", context="First Name Last Name Company")
    assert classify_descriptor(descriptor) == CanonicalKey.COMPANY


def test_context_used_when_primary_is_silent() -> None:
    descriptor = FieldDescriptor(name="f_1", context="Email address")
    assert classify_descriptor(descriptor) == CanonicalKey.EMAIL


def test_resolve_key_prefers_autocomplete_and_type() -> None:
    assert resolve_key(FieldDescriptor(autocomplete="given-name", label="Something")) == CanonicalKey.FIRST_NAME
    assert resolve_key(FieldDescriptor(type="tel", name="x")) == CanonicalKey.PHONE
    assert resolve_key(FieldDescriptor(type="email", label="Contact Info")) == CanonicalKey.EMAIL


def test_from_dict_accepts_dom_shape() -> None:
    descriptor = FieldDescriptor.from_dict(
        {"tag": "INPUT", "ariaLabel": "Email", "type": "TEXT", "required": True, "context": "x" * 500}
    )
    assert descriptor.tag == "input"
    assert descriptor.aria_label == "Email"
    assert descriptor.type == "text"
    assert descriptor.required
    assert len(descriptor.context) == 200


def test_sensitive_descriptors() -> None:
    card = FieldDescriptor(label="Card Number")
    assert resolve_key(card) == CanonicalKey.CREDIT_CARD
    assert is_sensitive_descriptor(card, resolve_key(card))
    assert is_sensitive_descriptor(FieldDescriptor(label="Social Security Number"))
    assert is_sensitive_descriptor(FieldDescriptor(autocomplete="cc-exp"))
    assert not is_sensitive_descriptor(FieldDescriptor(label="Email"), CanonicalKey.EMAIL)


def test_coerce_key_variants() -> None:
    assert coerce_key("email") == CanonicalKey.EMAIL
    assert coerce_key("POSTAL_CODE") == CanonicalKey.POSTAL_CODE
    assert coerce_key("postalCode") == CanonicalKey.POSTAL_CODE
    assert coerce_key(CanonicalKey.CITY) == CanonicalKey.CITY
    assert coerce_key("nonsense") is None
    assert coerce_key(42) is None


def test_registry_payload_shape() -> None:
    payload = field_registry_payload()
    keys = [item["key"] for item in payload["fields"]]
    assert keys == payload["order"]
    sensitive = {item["key"] for item in payload["fields"] if item["sensitive"]}
    assert sensitive == {"credit_card", "cvv", "expiry", "cardholder_name"}
