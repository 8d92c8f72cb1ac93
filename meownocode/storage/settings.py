"""Typed, versioned user settings.

The settings blob is upserted wholesale by every backend. Each category has
its own dataclass and is validated when the blob is deserialized, so a bad
value is caught where it enters the system instead of where it is used.

JSON keys are camelCase at the boundary (``themeColor``, ``fontConfig`` ...),
matching what the web client sends.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .exceptions import StorageValidationError

SETTINGS_VERSION = 1

_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


@dataclass
class ThemeSettings:
    color: str = "#818CF8"
    dark_mode: bool = False


@dataclass
class FontSettings:
    selected_font: str = "default"


@dataclass
class BackgroundSettings:
    image_url: str = ""
    brightness: int = 50
    blur: int = 10


@dataclass
class AvatarSettings:
    image_url: str = ""


@dataclass
class HitokotoSettings:
    enabled: bool = True
    types: list[str] = field(default_factory=lambda: ["a", "b", "c", "d", "i", "j", "k"])


@dataclass
class MusicSettings:
    enabled: bool = True
    custom_songs: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class UserSettings:
    """All preferences for one user."""
    user_id: str = "default"
    theme: ThemeSettings = field(default_factory=ThemeSettings)
    font: FontSettings = field(default_factory=FontSettings)
    background: BackgroundSettings = field(default_factory=BackgroundSettings)
    avatar: AvatarSettings = field(default_factory=AvatarSettings)
    hitokoto: HitokotoSettings = field(default_factory=HitokotoSettings)
    music: MusicSettings = field(default_factory=MusicSettings)
    canvas: dict[str, Any] | None = None
    s3: dict[str, Any] | None = None
    pinned_memos: list[str] = field(default_factory=list)
    version: int = SETTINGS_VERSION
    updated_at: str | None = None

    # Unknown top-level keys, kept so a round trip does not lose them
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserSettings":
        """Build settings from their JSON form, validating every category.

        Raises:
            StorageValidationError: listing every invalid field.
        """
        if not isinstance(data, dict):
            raise StorageValidationError("Settings must be an object")

        errors: list[str] = []
        data = dict(data)

        version = data.pop("version", SETTINGS_VERSION)
        if not isinstance(version, int) or version < 1 or version > SETTINGS_VERSION:
            errors.append(f"Unsupported settings version: {version}")

        theme = ThemeSettings(
            color=data.pop("themeColor", ThemeSettings.color),
            dark_mode=data.pop("darkMode", ThemeSettings.dark_mode),
        )
        if not isinstance(theme.color, str) or not _HEX_COLOR.match(theme.color):
            errors.append(f"themeColor must be a #RRGGBB color: {theme.color!r}")
        if not isinstance(theme.dark_mode, bool):
            theme.dark_mode = bool(theme.dark_mode)

        font_raw = _category(data.pop("fontConfig", None), "fontConfig", errors)
        font = FontSettings(selected_font=font_raw.get("selectedFont", "default"))
        if not isinstance(font.selected_font, str):
            errors.append("fontConfig.selectedFont must be a string")

        bg_raw = _category(data.pop("backgroundConfig", None), "backgroundConfig", errors)
        background = BackgroundSettings(
            image_url=bg_raw.get("imageUrl", ""),
            brightness=bg_raw.get("brightness", 50),
            blur=bg_raw.get("blur", 10),
        )
        _check_range(background.brightness, 0, 100, "backgroundConfig.brightness", errors)
        _check_range(background.blur, 0, 50, "backgroundConfig.blur", errors)

        avatar_raw = _category(data.pop("avatarConfig", None), "avatarConfig", errors)
        avatar = AvatarSettings(image_url=avatar_raw.get("imageUrl", ""))

        hitokoto_raw = _category(data.pop("hitokotoConfig", None), "hitokotoConfig", errors)
        hitokoto = HitokotoSettings(
            enabled=bool(hitokoto_raw.get("enabled", True)),
            types=hitokoto_raw.get("types", HitokotoSettings().types),
        )
        if not _is_str_list(hitokoto.types):
            errors.append("hitokotoConfig.types must be a list of strings")

        music_raw = _category(data.pop("musicConfig", None), "musicConfig", errors)
        music = MusicSettings(
            enabled=bool(music_raw.get("enabled", True)),
            custom_songs=music_raw.get("customSongs", []),
        )
        if not isinstance(music.custom_songs, list) or not all(
            isinstance(song, dict) for song in music.custom_songs
        ):
            errors.append("musicConfig.customSongs must be a list of objects")

        canvas = data.pop("canvasConfig", None)
        if canvas is not None and not isinstance(canvas, dict):
            errors.append("canvasConfig must be an object")

        s3 = data.pop("s3Config", None)
        if s3 is not None and not isinstance(s3, dict):
            errors.append("s3Config must be an object")

        pinned = data.pop("pinnedMemos", [])
        if not _is_str_list(pinned):
            errors.append("pinnedMemos must be a list of memo ids")

        if errors:
            raise StorageValidationError(errors)

        return cls(
            user_id=str(data.pop("userId", "default")),
            theme=theme,
            font=font,
            background=background,
            avatar=avatar,
            hitokoto=hitokoto,
            music=music,
            canvas=canvas,
            s3=s3,
            pinned_memos=list(pinned),
            version=version,
            updated_at=data.pop("updatedAt", None),
            extras=data,
        )

    def to_dict(self) -> dict[str, Any]:
        result = {
            "version": self.version,
            "userId": self.user_id,
            "themeColor": self.theme.color,
            "darkMode": self.theme.dark_mode,
            "fontConfig": {"selectedFont": self.font.selected_font},
            "backgroundConfig": {
                "imageUrl": self.background.image_url,
                "brightness": self.background.brightness,
                "blur": self.background.blur,
            },
            "avatarConfig": {"imageUrl": self.avatar.image_url},
            "hitokotoConfig": {
                "enabled": self.hitokoto.enabled,
                "types": list(self.hitokoto.types),
            },
            "musicConfig": {
                "enabled": self.music.enabled,
                "customSongs": list(self.music.custom_songs),
            },
            "canvasConfig": self.canvas,
            "s3Config": self.s3,
            "pinnedMemos": list(self.pinned_memos),
            "updatedAt": self.updated_at,
        }
        result.update(self.extras)
        return result

    def touch(self) -> None:
        """Stamp ``updated_at`` with the current UTC time."""
        self.updated_at = datetime.now(timezone.utc).isoformat()


def _category(value: Any, name: str, errors: list[str]) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        errors.append(f"{name} must be an object")
        return {}
    return value


def _check_range(value: Any, low: int, high: int, name: str, errors: list[str]) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not low <= value <= high:
        errors.append(f"{name} must be between {low} and {high}")


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)
