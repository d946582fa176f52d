"""
Blog module: posts, categories and tags.

- Posts carry a large optional medical/SEO metadata schema
- Writes go through service.normalize_post_payload + create/update helpers
- Public pages are cached and revalidated on every write
"""
