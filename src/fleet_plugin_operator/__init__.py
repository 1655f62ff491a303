"""Fleet control plane for Plugins and PluginPresets."""

__version__ = "0.1.0"
