"""Domain services for escrowed decryption, moderation and migration."""
