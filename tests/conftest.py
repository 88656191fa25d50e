import jax

# Float64 keeps finite-difference checks and whitening comparisons tight.
jax.config.update("jax_enable_x64", True)
