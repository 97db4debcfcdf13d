from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern


class CanonicalKey(str, Enum):
    EMAIL = "email"
    PASSWORD = "password"
    USERNAME = "username"
    FULL_NAME = "full_name"
    FIRST_NAME = "first_name"
    LAST_NAME = "last_name"
    COMPANY = "company"
    TITLE = "title"
    PHONE = "phone"
    WEBSITE = "website"
    ADDRESS1 = "address1"
    ADDRESS2 = "address2"
    CITY = "city"
    STATE = "state"
    POSTAL_CODE = "postal_code"
    COUNTRY = "country"
    CREDIT_CARD = "credit_card"
    CVV = "cvv"
    EXPIRY = "expiry"
    CARDHOLDER_NAME = "cardholder_name"


@dataclass(frozen=True)
class FieldSpec:
    key: CanonicalKey
    label: str
    exact: List[str] = field(default_factory=list)
    regex: List[Pattern[str]] = field(default_factory=list)
    fuzzy: List[str] = field(default_factory=list)
    env_aliases: List[str] = field(default_factory=list)
    input_types: List[str] = field(default_factory=list)
    sensitive: bool = False


def _rx(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Exact and fuzzy entries are matched against normalized text (lowercase,
# punctuation and camelCase boundaries turned into single spaces).
FIELDS: List[FieldSpec] = [
    FieldSpec(
        key=CanonicalKey.EMAIL,
        label="Email",
        exact=["email", "emailaddress"],
        regex=_rx(r"\be[\s-]?mail\b", r"\bmail\b.*\baddr"),
        fuzzy=["email address", "electronic mail", "email addr"],
        env_aliases=["EMAIL", "USER_EMAIL", "CONTACT_EMAIL", "FORM_EMAIL"],
        input_types=["email"],
    ),
    FieldSpec(
        key=CanonicalKey.PASSWORD,
        label="Password",
        exact=["password", "passwd", "passcode"],
        regex=_rx(r"\bpwd\b", r"\bpass\s*word\b"),
        fuzzy=["password", "pass word"],
        env_aliases=["PASSWORD", "USER_PASSWORD", "FORM_PASSWORD"],
        input_types=["password"],
    ),
    FieldSpec(
        key=CanonicalKey.USERNAME,
        label="Username",
        exact=["username", "user name", "login id", "user id", "userid"],
        regex=_rx(r"\blogin\b", r"\buser\b"),
        fuzzy=["user name", "login name"],
        env_aliases=["USERNAME", "USER_NAME", "LOGIN"],
    ),
    FieldSpec(
        key=CanonicalKey.FULL_NAME,
        label="Full name",
        exact=["full name", "fullname", "your name", "contact name"],
        regex=_rx(r"^\s*name\s*$", r"^\s*(your|legal|complete)\s+name\s*$"),
        fuzzy=["full name", "complete name"],
        env_aliases=["FULL_NAME", "CONTACT_NAME"],
    ),
    FieldSpec(
        key=CanonicalKey.FIRST_NAME,
        label="First name",
        exact=["first name", "firstname", "given name", "givenname", "fname", "forename"],
        regex=_rx(r"first.*name", r"given.*name", r"^f\.?\s?name$"),
        fuzzy=["first name", "given name", "forename"],
        env_aliases=["FIRST_NAME", "FIRSTNAME", "GIVEN_NAME"],
    ),
    FieldSpec(
        key=CanonicalKey.LAST_NAME,
        label="Last name",
        exact=["last name", "lastname", "surname", "family name", "familyname", "lname"],
        regex=_rx(r"last.*name", r"family.*name", r"sur.*name", r"^l\.?\s?name$"),
        fuzzy=["last name", "family name", "sur name"],
        env_aliases=["LAST_NAME", "LASTNAME", "SURNAME", "FAMILY_NAME"],
    ),
    FieldSpec(
        key=CanonicalKey.COMPANY,
        label="Company",
        exact=["company", "organization", "organisation", "employer", "business name"],
        regex=_rx(r"\bfirm\b", r"\borg\b", r"\bbusiness\b"),
        fuzzy=["company name", "organization name", "business name", "employer name"],
        env_aliases=["COMPANY", "COMPANY_NAME", "ORGANIZATION", "ORG", "FIRM"],
    ),
    FieldSpec(
        key=CanonicalKey.TITLE,
        label="Job title",
        exact=["job title", "jobtitle", "position"],
        regex=_rx(r"\btitle\b", r"\brole\b", r"\bdesignation\b"),
        fuzzy=["job title", "job position", "job role"],
        env_aliases=["TITLE", "JOB_TITLE", "POSITION"],
    ),
    FieldSpec(
        key=CanonicalKey.PHONE,
        label="Phone",
        exact=["phone", "telephone", "mobile", "phonenumber"],
        regex=_rx(r"\btel\b", r"\bcell\b", r"contact.*num"),
        fuzzy=["phone number", "telephone number", "contact number", "mobile number"],
        env_aliases=["PHONE", "PHONE_NUMBER", "TEL", "MOBILE"],
        input_types=["tel"],
    ),
    FieldSpec(
        key=CanonicalKey.WEBSITE,
        label="Website",
        exact=["website", "web site", "homepage", "home page"],
        regex=_rx(r"\burl\b", r"\bweb\b"),
        fuzzy=["website url", "company website"],
        env_aliases=["WEBSITE", "COMPANY_WEBSITE"],
        input_types=["url"],
    ),
    FieldSpec(
        key=CanonicalKey.ADDRESS1,
        label="Address line 1",
        exact=["address1", "address 1", "address line 1", "street address", "streetaddress", "street"],
        regex=_rx(r"\baddress\b(?!\s*(line\s*)?2)", r"\baddr\b"),
        fuzzy=["street address", "mailing address", "physical address"],
        env_aliases=["ADDRESS", "ADDRESS1", "ADDRESS_LINE1", "STREET"],
    ),
    FieldSpec(
        key=CanonicalKey.ADDRESS2,
        label="Address line 2",
        exact=["address2", "address 2", "address line 2", "apartment", "suite"],
        regex=_rx(r"\bapt\b", r"\bunit\b", r"\bline\s*2\b"),
        fuzzy=["address line two", "apartment suite"],
        env_aliases=["ADDRESS2", "ADDRESS_LINE2", "APT", "SUITE"],
    ),
    FieldSpec(
        key=CanonicalKey.CITY,
        label="City",
        exact=["city", "municipality", "locality"],
        regex=_rx(r"\btown\b"),
        fuzzy=["city name", "town name"],
        env_aliases=["CITY", "TOWN"],
    ),
    FieldSpec(
        key=CanonicalKey.STATE,
        label="State / province",
        exact=["province", "territory"],
        regex=_rx(r"\bstate\b", r"\bregion\b"),
        fuzzy=["state province", "state or province"],
        env_aliases=["STATE", "PROVINCE", "REGION"],
    ),
    FieldSpec(
        key=CanonicalKey.POSTAL_CODE,
        label="Postal code",
        exact=["zip", "postal", "postcode"],
        regex=_rx(r"post.*code"),
        fuzzy=["zip code", "postal code", "post code"],
        env_aliases=["ZIP", "ZIPCODE", "ZIP_CODE", "POSTAL_CODE", "POSTCODE"],
    ),
    FieldSpec(
        key=CanonicalKey.COUNTRY,
        label="Country",
        exact=["country"],
        regex=_rx(r"\bnation\b"),
        fuzzy=["country name", "nation name"],
        env_aliases=["COUNTRY", "COUNTRY_NAME"],
    ),
    FieldSpec(
        key=CanonicalKey.CREDIT_CARD,
        label="Card number",
        exact=["card number", "cardnumber", "credit card", "creditcard", "cc number", "ccnum"],
        regex=_rx(r"\bcc\b", r"\bpan\b"),
        fuzzy=["credit card number", "debit card number"],
        sensitive=True,
    ),
    FieldSpec(
        key=CanonicalKey.CVV,
        label="Card security code",
        exact=["cvv", "cvc", "csc", "security code"],
        regex=_rx(r"\bcvv2\b", r"\bcid\b"),
        fuzzy=["card verification value", "card security code"],
        sensitive=True,
    ),
    FieldSpec(
        key=CanonicalKey.EXPIRY,
        label="Card expiry",
        exact=["expiry", "expiration", "exp date"],
        regex=_rx(r"\bexp\b", r"\bmm\s*yy\b"),
        fuzzy=["expiration date", "expiry date"],
        sensitive=True,
    ),
    FieldSpec(
        key=CanonicalKey.CARDHOLDER_NAME,
        label="Cardholder name",
        exact=["cardholder", "card holder", "name on card"],
        regex=_rx(r"holder.*name"),
        fuzzy=["cardholder name", "name on card"],
        sensitive=True,
    ),
]

FIELD_ORDER: List[CanonicalKey] = [field.key for field in FIELDS]
SENSITIVE_KEYS = frozenset(field.key for field in FIELDS if field.sensitive)
# Generic names the host environment often sets by itself (USERNAME on Windows)
# are read only as DEALROOM_<NAME>.
PREFIXED_ONLY_ENV_ALIASES = frozenset(
    {
        "USERNAME", "LOGIN", "PASSWORD", "TITLE", "POSITION", "ORG", "FIRM", "TEL",
        "MOBILE", "STREET", "APT", "SUITE", "TOWN", "STATE", "REGION", "ZIP",
    }
)

AUTOCOMPLETE_MAP: Dict[str, CanonicalKey] = {
    "email": CanonicalKey.EMAIL,
    "username": CanonicalKey.USERNAME,
    "current-password": CanonicalKey.PASSWORD,
    "new-password": CanonicalKey.PASSWORD,
    "name": CanonicalKey.FULL_NAME,
    "given-name": CanonicalKey.FIRST_NAME,
    "family-name": CanonicalKey.LAST_NAME,
    "organization": CanonicalKey.COMPANY,
    "organization-title": CanonicalKey.TITLE,
    "tel": CanonicalKey.PHONE,
    "tel-national": CanonicalKey.PHONE,
    "url": CanonicalKey.WEBSITE,
    "street-address": CanonicalKey.ADDRESS1,
    "address-line1": CanonicalKey.ADDRESS1,
    "address-line2": CanonicalKey.ADDRESS2,
    "address-level2": CanonicalKey.CITY,
    "address-level1": CanonicalKey.STATE,
    "postal-code": CanonicalKey.POSTAL_CODE,
    "country": CanonicalKey.COUNTRY,
    "country-name": CanonicalKey.COUNTRY,
    "cc-number": CanonicalKey.CREDIT_CARD,
    "cc-csc": CanonicalKey.CVV,
    "cc-exp": CanonicalKey.EXPIRY,
    "cc-exp-month": CanonicalKey.EXPIRY,
    "cc-exp-year": CanonicalKey.EXPIRY,
    "cc-name": CanonicalKey.CARDHOLDER_NAME,
}

SENSITIVE_PATTERN = re.compile(
    r"(ssn|social[\s_-]*security|credit[\s_-]*card|card[\s_-]*number|cc[\s_-]*num|cvv|cvc"
    r"|security[\s_-]*code|iban|swift|routing|account[\s_-]*number|\bbank\b|\bdob\b"
    r"|date.*birth|birth.*date|passport|driver|licen[cs]e|tax[\s_-]*id)",
    re.IGNORECASE,
)


def coerce_key(key: object) -> Optional[CanonicalKey]:
    if isinstance(key, CanonicalKey):
        return key
    if not isinstance(key, str):
        return None
    text = key.strip()
    for candidate in CanonicalKey:
        if text.lower() == candidate.value or text.upper() == candidate.name:
            return candidate
    # camelCase platform keys (firstName, postalCode).
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", text).lower()
    for candidate in CanonicalKey:
        if snake == candidate.value:
            return candidate
    return None


def field_registry_payload() -> Dict[str, object]:
    return {
        "fields": [
            {
                "key": field.key.value,
                "label": field.label,
                "sensitive": field.sensitive,
                "env_aliases": list(field.env_aliases),
                "input_types": list(field.input_types),
            }
            for field in FIELDS
        ],
        "order": [key.value for key in FIELD_ORDER],
        "autocomplete": {name: key.value for name, key in AUTOCOMPLETE_MAP.items()},
    }
