"""kopf operator wiring for Plugins and PluginPresets."""
