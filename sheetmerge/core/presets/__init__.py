from sheetmerge.core.presets.store import MergePreset, MergePresetStore

__all__ = ["MergePreset", "MergePresetStore"]
