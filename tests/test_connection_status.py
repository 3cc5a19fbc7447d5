from datetime import timedelta

import pytest

from src.infrastructure.oauth_config import ClientCredentials, ProviderSecretsConfig
from src.schemas.connection_schema import (
    ConnectionState,
    FacebookConnection,
    InstagramAccount,
    InstagramConnection,
    LinkedInConnection,
    Platform,
    YouTubeConnection,
)
from src.services.connection_status import evaluate_connections, evaluate_platform

from conftest import NOW, SECRETS


def linkedin(expires_at):
    return LinkedInConnection(access_token="li", user_id="li-member-1", expires_at=expires_at, connected_at=NOW)


def test_not_configured_takes_precedence():
    secrets = ProviderSecretsConfig(facebook=ClientCredentials("fb-app-id", None))
    record = FacebookConnection(access_token="page-token", page_id="page-1")

    status = evaluate_platform(Platform.FACEBOOK, record, secrets, NOW)
    assert status.state == ConnectionState.NOT_CONFIGURED
    assert status.connected is False
    assert status.status == "Missing App Secret"


def test_instagram_follows_meta_credentials():
    secrets = ProviderSecretsConfig(youtube=SECRETS.youtube)
    status = evaluate_platform(Platform.INSTAGRAM, None, secrets, NOW)
    assert status.state == ConnectionState.NOT_CONFIGURED


def test_no_record_is_ready_to_connect():
    status = evaluate_platform(Platform.YOUTUBE, None, SECRETS, NOW)
    assert status.state == ConnectionState.READY_TO_CONNECT
    assert status.status == "Not connected"
    assert status.details == {}


def test_page_record_is_connected_regardless_of_age():
    record = InstagramConnection(
        access_token="page-token",
        page_id="page-1",
        instagram_account=InstagramAccount(id="ig-1", username="goodcreative"),
        connected_at=NOW - timedelta(days=900),
    )
    status = evaluate_platform(Platform.INSTAGRAM, record, SECRETS, NOW)
    assert status.state == ConnectionState.CONNECTED
    assert status.details["instagram_account"]["username"] == "goodcreative"


@pytest.mark.parametrize(
    "refresh_token, expected",
    [("yt-refresh", ConnectionState.CONNECTED), (None, ConnectionState.NEEDS_RECONNECT)],
)
def test_youtube_follows_refresh_token(refresh_token, expected):
    # the access token is long expired in both cases
    record = YouTubeConnection(
        access_token="yt-access",
        refresh_token=refresh_token,
        expires_at=NOW - timedelta(days=2),
        channel_id="UC123",
    )
    status = evaluate_platform(Platform.YOUTUBE, record, SECRETS, NOW)
    assert status.state == expected


def test_youtube_without_refresh_token_reports_expired():
    record = YouTubeConnection(access_token="yt-access", channel_id="UC123")
    status = evaluate_platform(Platform.YOUTUBE, record, SECRETS, NOW)
    assert status.connected is False
    assert status.status == "Token expired"


def test_linkedin_expiring_exactly_now_needs_reconnect():
    status = evaluate_platform(Platform.LINKEDIN, linkedin(NOW), SECRETS, NOW)
    assert status.state == ConnectionState.NEEDS_RECONNECT
    assert status.days_left == 0


def test_linkedin_one_second_left_is_connected():
    status = evaluate_platform(Platform.LINKEDIN, linkedin(NOW + timedelta(seconds=1)), SECRETS, NOW)
    assert status.state == ConnectionState.CONNECTED
    assert status.days_left == 1
    assert status.status == "Expires in 1 days"


@pytest.mark.parametrize(
    "remaining, days_left, message",
    [
        (timedelta(days=29, hours=1), 30, "Expires in 30 days"),
        (timedelta(days=30, hours=1), 31, "Connected"),
        (timedelta(days=300), 300, "Connected"),
    ],
)
def test_linkedin_expiry_warning(remaining, days_left, message):
    status = evaluate_platform(Platform.LINKEDIN, linkedin(NOW + remaining), SECRETS, NOW)
    assert status.state == ConnectionState.CONNECTED
    assert status.days_left == days_left
    assert status.status == message


def test_linkedin_warning_window_is_configurable():
    status = evaluate_platform(
        Platform.LINKEDIN, linkedin(NOW + timedelta(days=20)), SECRETS, NOW, warn_within_days=7
    )
    assert status.status == "Connected"


def test_linkedin_without_expiry_is_connected():
    status = evaluate_platform(Platform.LINKEDIN, linkedin(None), SECRETS, NOW)
    assert status.state == ConnectionState.CONNECTED
    assert status.days_left is None


def test_evaluate_connections_reports_every_platform():
    records = {
        "facebook": FacebookConnection(access_token="page-token", page_id="page-1"),
        "linkedin": linkedin(NOW - timedelta(days=1)),
    }
    statuses = evaluate_connections(records, SECRETS, NOW)

    assert set(statuses) == {"facebook", "instagram", "youtube", "linkedin"}
    assert statuses["facebook"].state == ConnectionState.CONNECTED
    assert statuses["instagram"].state == ConnectionState.READY_TO_CONNECT
    assert statuses["youtube"].state == ConnectionState.READY_TO_CONNECT
    assert statuses["linkedin"].state == ConnectionState.NEEDS_RECONNECT
