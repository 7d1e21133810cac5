import pytest

from authgate.errors import ValidationError
from authgate.services.password_policy import POLICY_MESSAGE, check_password_strength, is_strong_password


@pytest.mark.parametrize("pw", ["Abcdef1!", "C0mplex#Passw0rd", "Zz9_zzzz"])
def test_strong_passwords_pass(pw):
    assert is_strong_password(pw)
    check_password_strength(pw)


@pytest.mark.parametrize(
    "pw",
    [
        "abc12345",  # no uppercase, no special
        "Ab1!",  # too short
        "ABCDEFG1!",  # no lowercase
        "Abcdefgh!",  # no digit
        "Abcdefgh1",  # no special
        "",
    ],
)
def test_weak_passwords_fail_with_policy_message(pw):
    assert not is_strong_password(pw)
    with pytest.raises(ValidationError) as ei:
        check_password_strength(pw)
    assert ei.value.message == POLICY_MESSAGE
    assert ei.value.status_code == 400
