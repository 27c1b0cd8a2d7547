"""Call room signaling server and headless client."""
