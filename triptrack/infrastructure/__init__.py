"""TripTrack infrastructure - position sources and trip persistence."""
