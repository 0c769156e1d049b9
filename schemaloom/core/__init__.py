# Keep this package import-light: `from schemaloom.core.db.models import Base`
# must not pull in llama_index or the analysis pipeline.
