"""Asynchronous SketchUp/GLB conversion pipeline."""
