"""User agent rotation for outbound marketplace requests.

Agents are generated from a small table of desktop browser templates. The
pool remembers the last few agents it handed out and avoids them, so
consecutive requests from one process do not share a fingerprint.
"""

import logging
import random
import threading
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

_CHROME = "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{v}.0.0.0 Safari/537.36"

# (browser, platform, template, versions)
_TEMPLATES = [
    ("chrome", "windows", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) " + _CHROME, range(118, 131)),
    ("chrome", "mac", "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) " + _CHROME, range(118, 131)),
    ("chrome", "linux", "Mozilla/5.0 (X11; Linux x86_64) " + _CHROME, range(118, 131)),
    ("firefox", "windows", "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:{v}.0) Gecko/20100101 Firefox/{v}.0", range(120, 132)),
    ("firefox", "mac", "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:{v}.0) Gecko/20100101 Firefox/{v}.0", range(120, 132)),
    ("safari", "mac", "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/{v}.0 Safari/605.1.15", range(16, 18)),
    ("edge", "windows", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) " + _CHROME + " Edg/{v}.0.0.0", range(118, 131)),
]


@dataclass(frozen=True)
class UserAgentInfo:
    """User agent with metadata."""
    user_agent: str
    browser: str  # 'chrome', 'firefox', 'safari', 'edge'
    version: str
    platform: str  # 'windows', 'mac', 'linux'


def generate_user_agents(limit: int) -> List[UserAgentInfo]:
    """Expand the template table, stopping after ``limit`` agents."""
    agents = []
    for browser, platform, template, versions in _TEMPLATES:
        for version in versions:
            if len(agents) >= limit:
                return agents
            agents.append(
                UserAgentInfo(
                    user_agent=template.format(v=version),
                    browser=browser,
                    version=str(version),
                    platform=platform,
                )
            )
    return agents


class UserAgentPool:
    """Pool of realistic user agents with recent-use avoidance."""

    def __init__(self, pool_size: int = 200, recent_size: int = 20):
        """
        Args:
            pool_size: Upper bound on the number of generated agents
            recent_size: How many recently issued agents to avoid
        """
        self._user_agents = generate_user_agents(pool_size)
        self._recent_used: deque[str] = deque(maxlen=recent_size)
        self._lock = threading.Lock()
        logger.debug(f"User agent pool ready with {len(self._user_agents)} agents")

    def get_random(self, exclude_recent: bool = True) -> str:
        """
        Draw a user agent, skipping recently issued ones when possible.

        Falls back to the whole pool once every agent is in the recent window.
        """
        with self._lock:
            candidates = self._user_agents
            if exclude_recent and self._recent_used:
                recent = set(self._recent_used)
                candidates = [ua for ua in self._user_agents if ua.user_agent not in recent] or candidates

            chosen = random.choice(candidates).user_agent
            self._recent_used.append(chosen)
            return chosen

    def get_for_browser(self, browser: str, platform: Optional[str] = None) -> str:
        """Get a user agent for a specific browser and optional platform."""
        matching = [
            ua for ua in self._user_agents
            if ua.browser == browser and platform in (None, ua.platform)
        ]
        if not matching:
            return self.get_random()
        return random.choice(matching).user_agent

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Count agents per browser and per platform."""
        stats: Dict[str, Dict[str, int]] = {"browsers": {}, "platforms": {}}
        for ua in self._user_agents:
            stats["browsers"][ua.browser] = stats["browsers"].get(ua.browser, 0) + 1
            stats["platforms"][ua.platform] = stats["platforms"].get(ua.platform, 0) + 1
        return stats

    def __len__(self) -> int:
        return len(self._user_agents)
