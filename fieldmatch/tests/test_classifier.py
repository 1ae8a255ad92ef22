from fieldmatch.models import DetectedField, FieldIdentifiers
from fieldmatch.scanner import FieldClassifier
from fieldmatch.scanner.vocabulary import normalize_autocomplete


def _field(kind: str = "text", **identifiers) -> DetectedField:
    return DetectedField(ref="#f", identifiers=FieldIdentifiers(**identifiers), element_kind=kind)


def test_email_field_with_strong_signals_reaches_full_confidence():
    field = _field("email", name="work_email", label="Work Email", autocomplete="email")

    result = FieldClassifier().classify(field)

    assert result.inferred_type == "email"
    assert result.confidence == 100


def test_element_kind_wins_over_keywords():
    field = _field("tel", name="email_or_phone")

    assert FieldClassifier().infer_type(field) == "phone"


def test_autocomplete_hint_decides_type_for_plain_text_inputs():
    field = _field("text", name="fld3", autocomplete="shipping postal-code")

    result = FieldClassifier().classify(field)

    assert result.inferred_type == "zip"
    assert result.confidence == 40


def test_misspelled_autocomplete_is_normalized():
    assert normalize_autocomplete("given_name") == "given-name"
    assert normalize_autocomplete("postalcode") == "postal-code"
    assert normalize_autocomplete("off") is None
    assert normalize_autocomplete("favourite-colour") is None


def test_keyword_order_prefers_card_over_phone_context():
    field = _field("text", label="Card number")

    assert FieldClassifier().infer_type(field) == "creditcard"


def test_unknown_signals_fall_back_to_custom():
    field = _field("text", name="xyz")

    result = FieldClassifier().classify(field)

    assert result.inferred_type == "custom"
    assert result.confidence == 10


def test_classification_is_deterministic_and_bounded():
    classifier = FieldClassifier()
    field = _field(
        "email",
        name="email",
        element_id="email",
        label="Email",
        placeholder="you@example.com",
        aria_label="Email address",
        autocomplete="email",
        hints=("Contact",),
    )

    first = classifier.classify(field)
    second = classifier.classify(field)

    assert first == second
    assert 0 <= first.confidence <= 100
    assert first.confidence == 100


def test_hosted_form_fields_get_a_confidence_bonus():
    identifiers = FieldIdentifiers(label="Email address")
    plain = DetectedField(ref="#q", identifiers=identifiers)
    hosted = DetectedField(ref="#q", identifiers=identifiers, form_host="google_forms")

    classifier = FieldClassifier()

    assert classifier.confidence(plain) == 20
    assert classifier.confidence(hosted) == 30
    assert classifier.infer_type(hosted) == "email"
