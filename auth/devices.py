"""Device info from request headers.

Substring checks only. Good enough for showing a reader where their
sessions are open, not for analytics.
"""

from auth.types import Browser, DeviceInfo, Platform


def detect_platform(user_agent: str | None) -> Platform:
    if not user_agent:
        return Platform.WEB

    if "iPad" in user_agent or "Tablet" in user_agent:
        return Platform.TABLET
    # Android tablets omit "Mobile"
    if "Android" in user_agent:
        return Platform.MOBILE if "Mobile" in user_agent else Platform.TABLET
    if "iPhone" in user_agent or "Mobile" in user_agent:
        return Platform.MOBILE
    if "Electron" in user_agent:
        return Platform.DESKTOP
    return Platform.WEB


def detect_browser(user_agent: str | None) -> Browser:
    if not user_agent:
        return Browser.OTHER

    # Order matters: Edge sends "Chrome", Chrome sends "Safari"
    if "Edg/" in user_agent or "Edge/" in user_agent:
        return Browser.EDGE
    if "Firefox/" in user_agent or "FxiOS/" in user_agent:
        return Browser.FIREFOX
    if "Chrome/" in user_agent or "CriOS/" in user_agent:
        return Browser.CHROME
    if "Safari/" in user_agent:
        return Browser.SAFARI
    return Browser.OTHER


def device_from_request(user_agent: str | None, ip_address: str | None) -> DeviceInfo:
    """Build DeviceInfo from a User-Agent header and client IP."""
    return DeviceInfo(
        user_agent=user_agent,
        ip_address=ip_address,
        platform=detect_platform(user_agent),
        browser=detect_browser(user_agent),
    )
