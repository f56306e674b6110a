"""
Answer Generation

1. Select     : questions without answers (or all, when regenerating)
2. Prompt     : batches of 5 by position, or the whole paper by question_number
3. Reconcile  : match answers back onto question ids
4. Persist    : upsert per question, flip the paper's has_answers flag
"""
