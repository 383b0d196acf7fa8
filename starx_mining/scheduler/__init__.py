"""Background scheduling for the mining job."""
