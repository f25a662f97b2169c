from typing import List

from puzzlebot.constants import WordMatchConstants

class WordMatcher:
    """Cheap, deterministic completeness pre-filter run before the correctness oracle"""

    @staticmethod
    def levenshtein_distance(first: str, second: str) -> int:
        """
        Calculate the edit distance between two strings

        Args:
            first: First string
            second: Second string

        Returns:
            Minimum number of single-character inserts, deletes or substitutions
        """
        if first == second:
            return 0
        if not first:
            return len(second)
        if not second:
            return len(first)

        previous_row = list(range(len(second) + 1))
        for i, first_char in enumerate(first, start=1):
            current_row = [i]
            for j, second_char in enumerate(second, start=1):
                substitution = previous_row[j - 1] + (first_char != second_char)
                insertion = current_row[j - 1] + 1
                deletion = previous_row[j] + 1
                current_row.append(min(substitution, insertion, deletion))
            previous_row = current_row

        return previous_row[-1]

    @staticmethod
    def significant_words(text: str) -> List[str]:
        """
        Tokenize on whitespace, lower-case and drop articles

        Args:
            text: Raw answer or guess text

        Returns:
            Significant tokens in their original order
        """
        return [
            token for token in text.lower().split()
            if token not in WordMatchConstants.ARTICLES
        ]

    @staticmethod
    def words_match(expected: str, candidate: str) -> bool:
        """Exact match, or within the allowed typo distance"""
        if expected == candidate:
            return True
        return WordMatcher.levenshtein_distance(expected, candidate) <= WordMatchConstants.MAX_TYPO_DISTANCE

    @staticmethod
    def missing_significant_words(correct_answer: str, guess: str) -> List[str]:
        """
        List the answer's significant words that have no match in the guess

        Args:
            correct_answer: The puzzle's answer
            guess: The player's raw guess

        Returns:
            Unmatched answer tokens (empty when the guess is complete)
        """
        guess_tokens = WordMatcher.significant_words(guess)
        return [
            answer_token
            for answer_token in WordMatcher.significant_words(correct_answer)
            if not any(WordMatcher.words_match(answer_token, guess_token) for guess_token in guess_tokens)
        ]

    @staticmethod
    def has_all_significant_words(correct_answer: str, guess: str) -> bool:
        """
        Check that every significant word of the answer appears in the guess

        Order and extra guess words are irrelevant. A True result is necessary,
        not sufficient, for the guess to be correct.
        """
        return not WordMatcher.missing_significant_words(correct_answer, guess)
