"""
Tests for CPF generation and validation.
"""

import random

from ghostbank.utils.documents import format_cpf, generate_cpf, is_valid_cpf


class TestIsValidCpf:

    def test_known_valid(self):
        assert is_valid_cpf("529.982.247-25")
        assert is_valid_cpf("52998224725")

    def test_wrong_check_digit(self):
        assert not is_valid_cpf("529.982.247-26")

    def test_wrong_length_or_empty(self):
        assert not is_valid_cpf("1234")
        assert not is_valid_cpf("")
        assert not is_valid_cpf(None)


class TestGenerateCpf:

    def test_generated_cpfs_validate(self):
        rng = random.Random(7)
        for _ in range(100):
            cpf = generate_cpf(rng=rng)
            assert len(cpf) == 11
            assert cpf.isdigit()
            assert is_valid_cpf(cpf)

    def test_formatted(self):
        cpf = generate_cpf(formatted=True, rng=random.Random(1))
        assert cpf[3] == "." and cpf[7] == "." and cpf[11] == "-"
        assert is_valid_cpf(cpf)

    def test_format_cpf(self):
        assert format_cpf("52998224725") == "529.982.247-25"
