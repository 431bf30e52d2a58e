# moral_story_maker/backend/app.py
import base64
import uuid
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from moral_story_maker.backend import exports
from moral_story_maker.backend.adapters import image_adapter
from moral_story_maker.backend.dependencies import (
    get_database,
    get_object_store,
    require_admin,
    require_muxer_caller,
    require_user_id,
)
from moral_story_maker.backend.services import (
    billing,
    credits,
    muxer,
    stories,
    translation,
    tts,
    video,
)
from moral_story_maker.backend.services.safety import ensure_safe
from moral_story_maker.common.auth import parse_bearer
from moral_story_maker.common.config import (
    AUDIO_BUCKET,
    IMAGE_BUCKET,
    MEDIA_DIR,
)
from moral_story_maker.common.errors import (
    AuthenticationRequired,
    StoryMakerError,
    ValidationError,
)
from moral_story_maker.common.logging_config import get_logger
from moral_story_maker.common.models import (
    PROCESSING_METHODS,
    READING_LEVELS,
    AudioAsset,
    Story,
    VideoAsset,
)

log = get_logger(__name__)


# -------------------------------
# FastAPI app & middleware
# -------------------------------
app = FastAPI(title="Moral Story Maker API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Static files for the local object store
MEDIA_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=str(MEDIA_DIR)), name="media")


@app.exception_handler(StoryMakerError)
async def story_maker_error_handler(request: Request, exc: StoryMakerError):
    if exc.status_code >= 500:
        log.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    else:
        log.warning("{} {} rejected: {}", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# -------------------------------
# Pydantic models
# -------------------------------
ASPECT_PATTERN = r"^(16:9|9:16)$"
READING_LEVEL_PATTERN = "^(" + "|".join(READING_LEVELS) + ")$"


class AuthReq(BaseModel):
    email: str = Field(min_length=5, max_length=120)
    password: str = Field(min_length=6, max_length=200)


class AuthResp(BaseModel):
    user_id: str
    email: str
    token: str


class StoryPreferences(BaseModel):
    ageGroup: str = Field(min_length=1, max_length=40)
    genre: str = Field(min_length=1, max_length=60)
    moral: str = Field(min_length=1, max_length=200)
    characterName1: Optional[str] = Field(default=None, max_length=80)
    characterName2: Optional[str] = Field(default=None, max_length=80)
    language: Optional[str] = Field(default=None, max_length=40)
    tone: Optional[str] = Field(default=None, max_length=40)
    readingLevel: Optional[str] = Field(default=None, pattern=READING_LEVEL_PATTERN)
    lengthPreference: Optional[str] = Field(default=None, max_length=40)


class GenerateStoryReq(BaseModel):
    preferences: StoryPreferences
    enrich: bool = False
    save: bool = False
    model_config = ConfigDict(extra="forbid")


class TranslateReq(BaseModel):
    storyId: str = Field(min_length=1)
    targetLanguage: str = Field(min_length=2, max_length=40)


class ImageReq(BaseModel):
    prompt: str = Field(min_length=3, max_length=1000)
    style: str = Field(default="realistic", max_length=40)
    aspectRatio: str = Field(default="16:9", pattern=ASPECT_PATTERN)
    storyId: Optional[str] = None


class TTSReq(BaseModel):
    text: str = Field(min_length=1, max_length=4096)
    voice: str = Field(default=tts.DEFAULT_VOICE)


class StoryAudioReq(BaseModel):
    voice: str = Field(default=tts.DEFAULT_VOICE)


class VideoReq(BaseModel):
    storyId: str = Field(min_length=1)
    aspectRatio: str = Field(default="16:9", pattern=ASPECT_PATTERN)
    audioUrl: Optional[str] = None
    storyContent: Optional[str] = None


class ProcessVideoReq(BaseModel):
    imageUrl: str = Field(min_length=1)
    audioUrl: str = Field(min_length=1)
    outputFileName: str = Field(min_length=5, max_length=200)
    aspectRatio: str = Field(default="16:9", pattern=ASPECT_PATTERN)


class SaveVideoReq(BaseModel):
    videoUrl: str = Field(min_length=1)
    aspectRatio: str = Field(default="16:9", pattern=ASPECT_PATTERN)
    processingMethod: str = Field(default="ffmpeg")


class PdfReq(BaseModel):
    coverUrl: Optional[str] = None


class StoryReq(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    moral: str = ""
    age_group: str = ""
    genre: str = ""
    language: Optional[str] = None
    tone: Optional[str] = None
    reading_level: Optional[str] = Field(default=None, pattern=READING_LEVEL_PATTERN)
    length_preference: Optional[str] = None
    slug: Optional[str] = None
    reflection_questions: List[str] = Field(default_factory=list)
    action_steps: List[str] = Field(default_factory=list)
    related_quote: Optional[str] = None
    discussion_prompts: List[str] = Field(default_factory=list)
    image_prompt: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class StoryPatchReq(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = None
    moral: Optional[str] = None
    age_group: Optional[str] = None
    genre: Optional[str] = None
    language: Optional[str] = None
    tone: Optional[str] = None
    reading_level: Optional[str] = Field(default=None, pattern=READING_LEVEL_PATTERN)
    length_preference: Optional[str] = None
    reflection_questions: Optional[List[str]] = None
    action_steps: Optional[List[str]] = None
    related_quote: Optional[str] = None
    discussion_prompts: Optional[List[str]] = None
    image_prompt: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class AdminCreditsReq(BaseModel):
    userId: str = Field(min_length=1)
    credits: int = Field(ge=1, le=100000)
    monthYear: Optional[str] = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")


def _story_json(story: Story) -> Dict[str, Any]:
    return asdict(story)


def _require_local_db(db: Any) -> None:
    if not hasattr(db, "create_user"):
        raise HTTPException(
            status_code=501,
            detail="Local auth is disabled. Use Supabase for auth and profiles.",
        )


# -------------------------------
# Routes
# -------------------------------
@app.get("/health")
def health():
    return {"ok": True}


@app.post("/auth/register", response_model=AuthResp)
async def register(req: AuthReq, db: Any = Depends(get_database)):
    _require_local_db(db)
    try:
        user_id = await db.create_user(req.email, req.password)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    token = await db.create_session(user_id)
    return AuthResp(user_id=user_id, email=req.email.strip().lower(), token=token)


@app.post("/auth/login", response_model=AuthResp)
async def login(req: AuthReq, db: Any = Depends(get_database)):
    _require_local_db(db)
    user_id = await db.authenticate(req.email, req.password)
    if not user_id:
        raise AuthenticationRequired("Invalid credentials")
    token = await db.create_session(user_id)
    return AuthResp(user_id=user_id, email=req.email.strip().lower(), token=token)


@app.post("/generate-story")
async def generate_story(
    req: GenerateStoryReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    return await stories.generate_story(
        db,
        user_id,
        req.preferences.model_dump(exclude_none=True),
        enrich=req.enrich,
        save=req.save,
    )


@app.post("/translate-story")
async def translate_story(
    req: TranslateReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    translated = await translation.translate_story(
        db, user_id=user_id, story_id=req.storyId, language=req.targetLanguage
    )
    return {"translatedStoryId": translated.id, "story": _story_json(translated)}


@app.post("/generate-story-image")
async def generate_story_image(
    req: ImageReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
    store: Any = Depends(get_object_store),
):
    await ensure_safe(db, req.prompt)
    provider = await image_adapter.select_provider(db)
    image = await image_adapter.generate_image(
        req.prompt, aspect_ratio=req.aspectRatio, provider=provider
    )
    image_url = image.url
    if image_url is None:
        image_url = await store.upload(IMAGE_BUCKET, f"{uuid.uuid4()}.png", image.data, "image/png")
    if req.storyId:
        await stories.get_story_or_404(db, req.storyId)
        cost = await credits.get_credit_cost(db, "image")
        await db.insert_story_image(
            story_id=req.storyId,
            user_id=user_id,
            image_url=image_url,
            aspect_ratio=req.aspectRatio,
            credits_used=cost,
        )
        await credits.increment_credits(db, user_id, cost)
    return {"imageUrl": image_url, "provider": provider}


@app.post("/text-to-speech")
async def text_to_speech(req: TTSReq, user_id: str = Depends(require_user_id)):
    audio = await tts.synthesize_tts(req.text, voice=req.voice)
    return {"audioContent": base64.b64encode(audio).decode("ascii")}


@app.post("/stories/{story_id}/audio")
async def create_story_audio(
    story_id: str,
    req: StoryAudioReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
    store: Any = Depends(get_object_store),
):
    story = await stories.get_story_or_404(db, story_id)
    narration = "\n\n".join(p for p in (story.title, story.content, story.moral) if p)
    audio = await tts.synthesize_tts(narration, voice=req.voice)
    audio_url = await store.upload(
        AUDIO_BUCKET, f"{story_id}/{uuid.uuid4()}.mp3", audio, "audio/mpeg"
    )
    cost = await credits.get_credit_cost(db, "audio")
    asset = await db.insert_audio_asset(
        AudioAsset(
            story_id=story_id,
            user_id=user_id,
            audio_url=audio_url,
            voice_id=req.voice,
            credits_used=cost,
        )
    )
    await credits.increment_credits(db, user_id, cost)
    return asdict(asset)


@app.post("/generate-story-video")
async def generate_story_video(
    req: VideoReq,
    request: Request,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
    store: Any = Depends(get_object_store),
):
    audio_url = req.audioUrl
    if not audio_url:
        existing = await db.get_audio_asset(req.storyId, user_id)
        audio_url = existing.audio_url if existing else None
    if not audio_url:
        raise ValidationError("Generate the story audio before creating a video.")
    video_url = await video.generate_story_video(
        db=db,
        store=store,
        user_id=user_id,
        story_id=req.storyId,
        aspect_ratio=req.aspectRatio,
        audio_url=audio_url,
        auth_token=parse_bearer(request.headers.get("authorization", "")),
    )
    return {"videoUrl": video_url}


@app.post("/process-story-video")
async def process_story_video(
    req: ProcessVideoReq,
    caller: str = Depends(require_muxer_caller),
    store: Any = Depends(get_object_store),
):
    log.info("Muxing {} for {}", req.outputFileName, caller)
    video_url = await muxer.process_story_video(
        store,
        image_url=req.imageUrl,
        audio_url=req.audioUrl,
        output_key=req.outputFileName,
        aspect_ratio=req.aspectRatio,
    )
    return {"videoUrl": video_url}


@app.post("/stories/{story_id}/videos")
async def save_story_video(
    story_id: str,
    req: SaveVideoReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    if req.processingMethod not in PROCESSING_METHODS:
        raise ValidationError(
            f"processingMethod must be one of {', '.join(PROCESSING_METHODS)}"
        )
    await stories.get_story_or_404(db, story_id)
    cost = await credits.get_credit_cost(db, "video")
    asset = await db.insert_video_asset(
        VideoAsset(
            story_id=story_id,
            user_id=user_id,
            video_url=req.videoUrl,
            aspect_ratio=req.aspectRatio,
            processing_method=req.processingMethod,
            credits_used=cost,
        )
    )
    await credits.increment_credits(db, user_id, cost)
    return asdict(asset)


@app.post("/stories/{story_id}/pdf")
async def create_story_pdf(
    story_id: str,
    req: Optional[PdfReq] = None,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
    store: Any = Depends(get_object_store),
):
    asset = await exports.export_story_pdf(
        db,
        store,
        user_id=user_id,
        story_id=story_id,
        cover_url=req.coverUrl if req else None,
    )
    return asdict(asset)


@app.delete("/stories/{story_id}/pdf")
async def delete_story_pdf(
    story_id: str,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
    store: Any = Depends(get_object_store),
):
    await exports.delete_story_pdf(db, store, user_id=user_id, story_id=story_id)
    return {"ok": True}


@app.get("/stories")
async def list_stories(user_id: str = Depends(require_user_id), db: Any = Depends(get_database)):
    return {"stories": [_story_json(s) for s in await db.list_stories(user_id)]}


@app.post("/stories")
async def create_story(
    req: StoryReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    await ensure_safe(db, req.title, req.content, req.moral)
    story = await stories.create_story(db, user_id, req.model_dump())
    return _story_json(story)


@app.get("/stories/{story_id}")
async def get_story(
    story_id: str,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    return _story_json(await stories.get_story_or_404(db, story_id))


@app.patch("/stories/{story_id}")
async def patch_story(
    story_id: str,
    req: StoryPatchReq,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    patch = req.model_dump(exclude_none=True)
    await ensure_safe(db, patch.get("title", ""), patch.get("content", ""), patch.get("moral", ""))
    return _story_json(await stories.update_story(db, user_id, story_id, patch))


@app.delete("/stories/{story_id}")
async def delete_story(
    story_id: str,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    await stories.delete_story(db, user_id, story_id)
    return {"ok": True}


@app.post("/stories/{story_id}/favorite")
async def toggle_favorite(
    story_id: str,
    user_id: str = Depends(require_user_id),
    db: Any = Depends(get_database),
):
    await stories.get_story_or_404(db, story_id)
    return {"favorited": await db.toggle_favorite(story_id, user_id)}


@app.get("/credits")
async def get_credits(user_id: str = Depends(require_user_id), db: Any = Depends(get_database)):
    summary = await credits.credit_summary(db, user_id)
    return {**asdict(summary), "remaining": summary.remaining}


@app.post("/admin/credits")
async def admin_grant_credits(
    req: AdminCreditsReq,
    admin_id: str = Depends(require_admin),
    db: Any = Depends(get_database),
):
    total = await credits.increment_credits(db, req.userId, -req.credits, req.monthYear)
    log.info("Admin {} granted {} credits to {}", admin_id, req.credits, req.userId)
    return {"userId": req.userId, "creditsUsed": total}


@app.post("/stripe-webhook")
async def stripe_webhook(request: Request, db: Any = Depends(get_database)):
    payload = await request.body()
    event = billing.construct_event(payload, request.headers.get("stripe-signature"))
    return await billing.handle_event(db, event)
