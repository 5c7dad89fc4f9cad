"""Preset management on top of user preferences.

All functions are pure: they return updated copies and never touch storage.
"""

from pid_board.errors import ValidationError
from pid_board.models.preferences import BoardFilters, Preset, UserPreferences

FILTER_FIELDS = tuple(BoardFilters.model_fields)


def find_preset(preferences: UserPreferences, name: str) -> Preset | None:
    """Find a preset by case-insensitive name."""
    folded = name.strip().casefold()
    for preset in preferences.presets:
        if preset.name.casefold() == folded:
            return preset
    return None


def update_preferences(preferences: UserPreferences, **changes) -> UserPreferences:
    """Return preferences with changes applied and validated (clamped).

    Raises:
        ValidationError: If a change names an unknown preference.
    """
    unknown = sorted(set(changes) - set(UserPreferences.model_fields))
    if unknown:
        raise ValidationError(f"Unknown preference: {', '.join(unknown)}")

    data = preferences.model_dump()
    data.update(changes)
    return UserPreferences.model_validate(data)


def save_preset(preferences: UserPreferences, name: str) -> UserPreferences:
    """Store the current stops and configuration under a name.

    An existing preset with the same name (ignoring case) is overwritten in place.

    Raises:
        ValidationError: If the name is blank.
    """
    cleaned = name.strip() if name else ""
    if not cleaned:
        raise ValidationError("Enter a preset name.")

    preset = Preset(
        name=cleaned,
        stops=[stop.model_copy(deep=True) for stop in preferences.selected_stops],
        **{field: getattr(preferences, field) for field in FILTER_FIELDS},
    )

    presets = list(preferences.presets)
    folded = cleaned.casefold()
    for i, existing in enumerate(presets):
        if existing.name.casefold() == folded:
            presets[i] = preset
            break
    else:
        presets.append(preset)

    return preferences.model_copy(update={"presets": presets})


def apply_preset(preferences: UserPreferences, name: str) -> UserPreferences:
    """Replace the stop selection and configuration with a saved preset's.

    Raises:
        ValidationError: If no preset has that name.
    """
    preset = find_preset(preferences, name)
    if preset is None:
        raise ValidationError(f'Preset "{name}" not found.')

    return update_preferences(
        preferences,
        selected_stops=[stop.model_dump() for stop in preset.stops],
        **{field: getattr(preset, field) for field in FILTER_FIELDS},
    )


def delete_preset(preferences: UserPreferences, name: str) -> UserPreferences:
    folded = name.strip().casefold()
    presets = [preset for preset in preferences.presets if preset.name.casefold() != folded]
    return preferences.model_copy(update={"presets": presets})
