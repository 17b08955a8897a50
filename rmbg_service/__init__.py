"""
RMBG background removal package.

Exposes reusable primitives for decoding images, running the segmentation
model, compositing the result, processing batches, and serving the FastAPI
application.
"""
