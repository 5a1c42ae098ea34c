"""
Rules package.

Defines the override/condition model and the evaluation pipeline used to
resolve a config's effective value for a context:

- models: Config, Variant, Override and the condition union.
- evaluator: Total condition evaluation with short-circuiting composites.
- bucketer: Frozen FNV-1a percentage bucketing for segmentation.
- resolver: Variant selection and first-match override resolution.

Evaluation is pure and reentrant; all state lives in the config store.
"""
