"""TripTrack - field-sales trip tracker."""

__version__ = "0.1.0"
