import argparse
import os
import sys

from moral_story_maker.client.api_client import API_BASE_URL, StoryApiClient, StoryApiError
from moral_story_maker.common.logging_config import get_logger

log = get_logger("make_story")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a moral story (and optional media) through the API."
    )
    parser.add_argument("--age-group", default="elementary")
    parser.add_argument("--genre", default="adventure")
    parser.add_argument("--moral", required=True, help="e.g. honesty, kindness")
    parser.add_argument("--character", action="append", default=[], help="Up to two names")
    parser.add_argument("--translate", metavar="LANG", help="Also translate the story")
    parser.add_argument("--audio", action="store_true", help="Narrate the story")
    parser.add_argument("--video", choices=["16:9", "9:16"], help="Render a video (implies --audio)")
    parser.add_argument("--pdf", action="store_true", help="Export a PDF")
    parser.add_argument("--enrich", action="store_true", help="Add reflection questions etc.")
    parser.add_argument("--base-url", default=API_BASE_URL)
    parser.add_argument("--token", default=os.getenv("STORY_API_TOKEN", ""))
    parser.add_argument("--email", default=os.getenv("STORY_API_EMAIL", ""))
    parser.add_argument("--password", default=os.getenv("STORY_API_PASSWORD", ""))
    args = parser.parse_args()

    client = StoryApiClient(token=args.token, base_url=args.base_url)
    try:
        if not client.token:
            if not (args.email and args.password):
                parser.error("Provide --token or --email/--password.")
            client.login(args.email, args.password)

        result = client.generate_story(
            age_group=args.age_group,
            genre=args.genre,
            moral=args.moral,
            character_names=tuple(args.character),
            enrich=args.enrich,
        )
        story_id = result.get("storyId")
        print(result["story"])
        print(f"\nStory id: {story_id}")

        if args.translate and story_id:
            translated = client.translate(story_id, args.translate)
            print(f"Translation: {translated['translatedStoryId']}")
        if (args.audio or args.video) and story_id:
            audio = client.story_audio(story_id)
            print(f"Audio: {audio['audio_url']}")
            if args.video:
                print(f"Video: {client.video(story_id, args.video, audio['audio_url'])}")
        if args.pdf and story_id:
            print(f"PDF: {client.pdf(story_id)['pdf_url']}")

        summary = client.credits()
        print(f"Credits used this month: {summary['credits_used']}")
    except StoryApiError as e:
        log.error("{}", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
