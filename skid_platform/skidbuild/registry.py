from typing import Iterable, Type

from skidbuild.plugins.base import SubmissionPlugin
from skidbuild.records import Channel


class PluginNotFoundError(Exception):
    def __init__(self, channel: str):
        super().__init__(f"No submission plugin for channel {channel!r}")
        self.channel = channel


class PluginRegistry:
    """Submission plugins keyed by scan channel, one plugin per channel."""

    def __init__(self, plugin_classes: Iterable[Type[SubmissionPlugin]] = ()):
        self._by_channel: dict[Channel, SubmissionPlugin] = {}
        for plugin_cls in plugin_classes:
            self.register(plugin_cls)

    def register(self, plugin_cls: Type[SubmissionPlugin]) -> SubmissionPlugin:
        plugin = plugin_cls()
        channel = Channel(plugin.channel)
        if channel in self._by_channel:
            taken = type(self._by_channel[channel]).__name__
            raise ValueError(f"Channel {channel.value} is already served by {taken}")
        self._by_channel[channel] = plugin
        return plugin

    def resolve(self, channel: str | Channel) -> SubmissionPlugin:
        try:
            return self._by_channel[Channel(channel)]
        except (ValueError, KeyError):
            raise PluginNotFoundError(str(getattr(channel, "value", channel))) from None

    def channels(self) -> list[str]:
        return sorted(c.value for c in self._by_channel)
