from __future__ import annotations


def bool_prop(key: str, *, default: bool) -> property:
    def _get(self) -> bool:
        try:
            return bool(self._settings.get(key, default))
        except Exception:
            return bool(default)

    def _set(self, value: bool) -> None:
        self._settings[key] = bool(value)
        self._save()

    return property(_get, _set)


def float_prop(key: str, *, default: float, min_v: float | None = None, max_v: float | None = None) -> property:
    def _clamp(v: float) -> float:
        if min_v is not None:
            v = max(float(min_v), v)
        if max_v is not None:
            v = min(float(max_v), v)
        return v

    def _get(self) -> float:
        try:
            v = float(self._settings.get(key, default))
        except Exception:
            v = float(default)
        return _clamp(v)

    def _set(self, value: float) -> None:
        try:
            v = float(value)
        except Exception:
            v = float(default)
        self._settings[key] = _clamp(v)
        self._save()

    return property(_get, _set)


def str_prop(key: str, *, default: str) -> property:
    def _get(self) -> str:
        v = self._settings.get(key, default)
        if v is None:
            return default
        v = str(v).strip()
        return v or default

    def _set(self, value: str) -> None:
        self._settings[key] = str(value or default).strip()
        self._save()

    return property(_get, _set)
