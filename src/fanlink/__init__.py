"""fanlink - serial monitor and multi-image firmware flasher for ESP32 fan controllers."""

__version__ = "0.1.0"
