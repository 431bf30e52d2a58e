import pytest

from moral_story_maker.client.api_client import StoryApiClient, StoryApiError


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.ok = status_code < 400
        self.text = str(body)

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


def test_login_stores_token():
    session = FakeSession(FakeResponse(200, {"user_id": "u", "email": "a@b.c", "token": "tok"}))
    client = StoryApiClient(base_url="http://api.test/", session=session)

    assert client.login("a@b.c", "secret", register=True) == "tok"
    method, url, _ = session.calls[0]
    assert (method, url) == ("POST", "http://api.test/auth/register")
    assert client._headers() == {"Authorization": "Bearer tok"}


def test_generate_story_payload():
    session = FakeSession(FakeResponse(200, {"story": "s", "storyId": "1"}))
    client = StoryApiClient(token="tok", base_url="http://api.test", session=session)

    client.generate_story(
        age_group="kids", genre="fable", moral="sharing", character_names=("Mia", "Leo", "Extra"), tone="gentle"
    )
    payload = session.calls[0][2]["json"]
    assert payload["preferences"] == {
        "ageGroup": "kids",
        "genre": "fable",
        "moral": "sharing",
        "characterName1": "Mia",
        "characterName2": "Leo",
        "tone": "gentle",
    }
    assert payload["save"] is True


def test_video_saves_the_asset():
    session = FakeSession(
        FakeResponse(200, {"videoUrl": "https://s/v.mp4"}),
        FakeResponse(200, {"id": "v1"}),
    )
    client = StoryApiClient(token="tok", base_url="http://api.test", session=session)

    assert client.video("s1", "9:16", "https://s/a.mp3") == "https://s/v.mp4"
    assert session.calls[1][1] == "http://api.test/stories/s1/videos"
    assert session.calls[1][2]["json"]["aspectRatio"] == "9:16"


@pytest.mark.parametrize(
    "body, detail",
    [({"error": "Invalid token"}, "Invalid token"), (ValueError("no json"), "no json")],
)
def test_errors_carry_detail(body, detail):
    session = FakeSession(FakeResponse(401, body))
    client = StoryApiClient(token="tok", session=session)
    with pytest.raises(StoryApiError) as exc:
        client.credits()
    assert exc.value.status_code == 401
    assert detail in exc.value.detail
